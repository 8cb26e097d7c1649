"""
The cmd module holds the commands exposed by the template_operator entrypoint
"""

# Local
from .base import CmdBase
from .render_cmd import RenderCmd
from .run_operator_cmd import RunOperatorCmd
