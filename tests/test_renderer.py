"""
Tests for the manifest parser and the renderers
"""

# Standard
from unittest import mock
import os
import subprocess

# Third Party
import pytest
import yaml

# Local
from template_operator import constants
from template_operator.custom_resource import CustomResource
from template_operator.exceptions import RenderError, StoreError
from template_operator.renderer import (
    RenderedSet,
    StaticDirectoryRenderer,
    TemplatedPackageRenderer,
    parse_manifest,
)
from template_operator.test_helpers.helpers import (
    MockDeployManager,
    make_config_map,
    section_config,
    setup_cr,
    write_manifest_dir,
)

## Helpers #####################################################################


def static_cr(path):
    return CustomResource(setup_cr(spec={constants.RESOURCE_FILE_PATH_FIELD: str(path)}))


def helm_cr(path):
    return CustomResource(
        setup_cr(
            kind=constants.SAMPLE_HELM_KIND,
            spec={constants.CHART_PATH_FIELD: str(path)},
        )
    )


def helm_config(**overrides):
    vals = {
        "binary": "helm",
        "release_name": "sample-release-name",
        "namespace": "default",
        "client_only": True,
        "timeout_seconds": 5,
        "values": {"label": "custom-label-from-controller"},
    }
    vals.update(overrides)
    return section_config(**vals)


def completed(stdout=b"", stderr=b"", returncode=0):
    return subprocess.CompletedProcess(
        args=[], returncode=returncode, stdout=stdout, stderr=stderr
    )


TWO_OBJECTS = """
apiVersion: v1
kind: ConfigMap
metadata:
  name: one
---
apiVersion: v1
kind: ConfigMap
metadata:
  name: two
"""

## RenderedSet #################################################################


def test_rendered_set_len_and_bool():
    assert not RenderedSet()
    assert len(RenderedSet(raw_blobs=[b"x"])) == 0
    assert RenderedSet(objects=[{"kind": "Foo"}])


## parse_manifest ##############################################################


def test_parse_manifest_multiple_documents():
    """Make sure each document becomes one object in order"""
    res = parse_manifest(TWO_OBJECTS)
    assert [obj["metadata"]["name"] for obj in res.objects] == ["one", "two"]
    assert res.raw_blobs == []


def test_parse_manifest_skips_empty_and_null():
    """Make sure blank, null and comment-only documents are skipped"""
    manifest = "---\n\n---\nnull\n---\n# only a comment\n---\nkind: Foo\n---\n"
    res = parse_manifest(manifest)
    assert res.objects == [{"kind": "Foo"}]
    assert res.raw_blobs == []


def test_parse_manifest_leading_delimiter_with_suffix():
    """Make sure a delimiter line with trailing text still splits documents"""
    res = parse_manifest("--- # first\nkind: A\n--- # second\nkind: B\n")
    assert [obj["kind"] for obj in res.objects] == ["A", "B"]


def test_parse_manifest_raw_blobs():
    """Make sure fragments that are not objects are preserved as raw blobs"""
    manifest = "kind: Foo\n---\njust some text\n---\nfoo: [unclosed\n---\n- a\n- b\n"
    res = parse_manifest(manifest)
    assert res.objects == [{"kind": "Foo"}]
    assert res.raw_blobs == [b"just some text\n", b"foo: [unclosed\n", b"- a\n- b\n"]


def test_parse_manifest_mapping_without_kind_is_raw():
    res = parse_manifest("apiVersion: v1\nmetadata:\n  name: x\n")
    assert not res.objects
    assert len(res.raw_blobs) == 1


def test_parse_manifest_empty():
    assert parse_manifest("") == RenderedSet()


## StaticDirectoryRenderer #####################################################


def test_static_single_file(tmp_path):
    """Make sure the objects of the single manifest file are rendered"""
    write_manifest_dir(tmp_path, make_config_map("a"), make_config_map("b"))
    res = StaticDirectoryRenderer().render(static_cr(tmp_path))
    assert [obj["metadata"]["name"] for obj in res.objects] == ["a", "b"]


def test_static_yml_extension(tmp_path):
    write_manifest_dir(tmp_path, make_config_map("a"), fname="manifest.yml")
    assert len(StaticDirectoryRenderer().render(static_cr(tmp_path))) == 1


def test_static_ignores_other_files(tmp_path):
    write_manifest_dir(tmp_path, make_config_map("a"))
    (tmp_path / "README.md").write_text("not a manifest")
    assert len(StaticDirectoryRenderer().render(static_cr(tmp_path))) == 1


def test_static_no_manifest_is_empty(tmp_path):
    """Make sure an empty directory renders an empty set rather than failing"""
    res = StaticDirectoryRenderer().render(static_cr(tmp_path))
    assert res == RenderedSet()


def test_static_two_manifests_is_empty(tmp_path):
    """Make sure an ambiguous directory renders an empty set"""
    write_manifest_dir(tmp_path, make_config_map("a"), fname="a.yaml")
    write_manifest_dir(tmp_path, make_config_map("b"), fname="b.yaml")
    assert StaticDirectoryRenderer().render(static_cr(tmp_path)) == RenderedSet()


def test_static_file_path_is_empty(tmp_path):
    """Make sure a path that is a file and not a directory renders nothing"""
    fname = tmp_path / "manifest.yaml"
    fname.write_text(yaml.safe_dump(make_config_map()))
    assert StaticDirectoryRenderer().render(static_cr(fname)) == RenderedSet()


def test_static_missing_path(tmp_path):
    """Make sure a path that does not exist is a render error"""
    with pytest.raises(RenderError):
        StaticDirectoryRenderer().render(static_cr(tmp_path / "nope"))


def test_static_missing_spec_field():
    with pytest.raises(RenderError):
        StaticDirectoryRenderer().render(CustomResource(setup_cr()))


def test_static_unreadable_file(tmp_path):
    """Make sure a manifest that cannot be decoded is a render error"""
    (tmp_path / "manifest.yaml").write_bytes(b"\xff\xfe\xfa kind: Foo")
    with pytest.raises(RenderError):
        StaticDirectoryRenderer().render(static_cr(tmp_path))


def test_static_custom_path_field(tmp_path):
    write_manifest_dir(tmp_path, make_config_map("a"))
    cr = CustomResource(setup_cr(spec={"manifests": str(tmp_path)}))
    assert len(StaticDirectoryRenderer(path_field="manifests").render(cr)) == 1


## TemplatedPackageRenderer ####################################################


def test_templated_client_only(tmp_path):
    """Make sure helm template is run with the configured release, namespace
    and value overlay and its output is parsed
    """
    seen_values = {}

    def fake_run(cmd, **kwargs):
        with open(cmd[-1], encoding="utf-8") as handle:
            seen_values.update(yaml.safe_load(handle))
        assert kwargs["timeout"] == 5
        return completed(stdout=TWO_OBJECTS.encode("utf-8"))

    renderer = TemplatedPackageRenderer(helm_config=helm_config())
    with mock.patch(
        "template_operator.renderer.templated_package.subprocess.run",
        side_effect=fake_run,
    ) as run_mock:
        res = renderer.render(helm_cr(tmp_path))

    cmd = run_mock.call_args.args[0]
    assert cmd[:4] == ["helm", "template", "sample-release-name", str(tmp_path)]
    assert cmd[4:7] == ["--namespace", "default", "--include-crds"]
    assert cmd[7] == "--values"
    assert seen_values == {"label": "custom-label-from-controller"}
    assert [obj["metadata"]["name"] for obj in res.objects] == ["one", "two"]


def test_templated_command_failure(tmp_path):
    """Make sure a failing helm run is a render error carrying stderr"""
    renderer = TemplatedPackageRenderer(helm_config=helm_config())
    with mock.patch(
        "template_operator.renderer.templated_package.subprocess.run",
        return_value=completed(stderr=b"chart is broken", returncode=1),
    ):
        with pytest.raises(RenderError) as exc_info:
            renderer.render(helm_cr(tmp_path))
    assert "chart is broken" in str(exc_info.value)


@pytest.mark.parametrize(
    "error",
    [FileNotFoundError("no helm"), subprocess.TimeoutExpired(["helm"], 5)],
)
def test_templated_command_not_run(tmp_path, error):
    """Make sure a missing binary or a timeout is a render error"""
    renderer = TemplatedPackageRenderer(helm_config=helm_config())
    with mock.patch(
        "template_operator.renderer.templated_package.subprocess.run",
        side_effect=error,
    ):
        with pytest.raises(RenderError):
            renderer.render(helm_cr(tmp_path))


def test_templated_missing_chart(tmp_path):
    renderer = TemplatedPackageRenderer(helm_config=helm_config())
    with mock.patch(
        "template_operator.renderer.templated_package.subprocess.run"
    ) as run_mock:
        with pytest.raises(RenderError):
            renderer.render(helm_cr(tmp_path / "nope"))
    run_mock.assert_not_called()


def test_templated_server_side_dry_run(tmp_path):
    """Make sure objects are resolved through a dry-run apply and nothing is
    persisted
    """
    dm = MockDeployManager()
    renderer = TemplatedPackageRenderer(
        deploy_manager=dm,
        helm_config=helm_config(client_only=False, namespace="ns"),
        field_owner="owner",
    )
    with mock.patch(
        "template_operator.renderer.templated_package.subprocess.run",
        return_value=completed(stdout=TWO_OBJECTS.encode("utf-8")),
    ):
        res = renderer.render(helm_cr(tmp_path))

    assert dm.apply.call_count == 2
    for call in dm.apply.call_args_list:
        assert call.kwargs["dry_run"] is True
    assert [obj["metadata"]["namespace"] for obj in res.objects] == ["ns", "ns"]
    assert all("resourceVersion" not in obj["metadata"] for obj in res.objects)
    assert not dm.has_obj("ConfigMap", "one", "ns")


def test_templated_server_side_dry_run_failure(tmp_path):
    """Make sure dry-run failures are collected into a render error"""
    dm = MockDeployManager(apply_fail=StoreError("rejected"))
    renderer = TemplatedPackageRenderer(
        deploy_manager=dm, helm_config=helm_config(client_only=False)
    )
    with mock.patch(
        "template_operator.renderer.templated_package.subprocess.run",
        return_value=completed(stdout=TWO_OBJECTS.encode("utf-8")),
    ):
        with pytest.raises(RenderError) as exc_info:
            renderer.render(helm_cr(tmp_path))
    assert str(exc_info.value).count("rejected") == 2


def test_templated_server_side_dry_run_empty_metadata(tmp_path):
    """Make sure a rendered document with an empty metadata key is reported as
    a render error
    """
    dm = MockDeployManager()
    renderer = TemplatedPackageRenderer(
        deploy_manager=dm, helm_config=helm_config(client_only=False, namespace="ns")
    )
    manifest = "apiVersion: v1\nkind: ConfigMap\nmetadata:\n"
    with mock.patch(
        "template_operator.renderer.templated_package.subprocess.run",
        return_value=completed(stdout=manifest.encode("utf-8")),
    ):
        with pytest.raises(RenderError):
            renderer.render(helm_cr(tmp_path))
    dm.apply.assert_called_once()
    assert dm.apply.call_args.args[0]["metadata"] == {"namespace": "ns"}


def test_templated_requires_deploy_manager_for_dry_run():
    with pytest.raises(AssertionError):
        TemplatedPackageRenderer(helm_config=helm_config(client_only=False))


def test_templated_uses_library_config(tmp_path):
    """Make sure the helm section of the library config is used by default"""
    renderer = TemplatedPackageRenderer()
    assert renderer.helm_config.release_name == "sample-release-name"
    assert os.path.basename(renderer.helm_config.binary) == "helm"
