"""
Base class for the subcommands of the template_operator entrypoint
"""

# Standard
import abc
import argparse


class CmdBase(abc.ABC):
    """A subcommand owns its argument parser and the function it runs"""

    @abc.abstractmethod
    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        """Register this command with the main parser

        Args:
            subparsers:  argparse._SubParsersAction
                The subparsers of the main parser

        Returns:
            parser:  argparse.ArgumentParser
                The parser for this command
        """

    @abc.abstractmethod
    def cmd(self, args: argparse.Namespace):
        """Run the command

        Args:
            args:  argparse.Namespace
                The parsed arguments, including library config overrides
        """
