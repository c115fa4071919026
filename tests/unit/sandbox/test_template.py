"""Tests for the environment template."""
import pytest
from pydantic import ValidationError

from hookrelay.sandbox.template import EnvironmentTemplate, webhook_template


class TestWebhookTemplate:
    """Tests for webhook_template()."""

    def test_runs_webhook_as_entrypoint(self) -> None:
        template = webhook_template()

        assert template.entrypoint == ("/usr/local/bin/webhook",)
        assert template.command == ("-verbose", "-port", "9000", "-hooks", "hooks.json")
        assert template.exposed_port == 9000
        assert template.workdir == "/hooks"

    def test_dockerfile_installs_pinned_release(self) -> None:
        dockerfile = webhook_template(version="2.8.1", base_image="ubuntu:lunar").dockerfile()

        assert dockerfile.startswith("FROM ubuntu:lunar\n")
        assert "releases/download/2.8.1/webhook-linux-amd64.tar.gz" in dockerfile
        assert "webhook-linux-amd64/webhook" in dockerfile
        assert "EXPOSE 9000" in dockerfile
        assert 'ENTRYPOINT ["/usr/local/bin/webhook"]' in dockerfile
        assert 'CMD ["-verbose", "-port", "9000", "-hooks", "hooks.json"]' in dockerfile

    def test_custom_port(self) -> None:
        template = webhook_template(port=9100)

        assert template.exposed_port == 9100
        assert "9100" in template.command


class TestTemplateImage:
    """The image tag is derived from the template definition."""

    def test_identical_definitions_share_image(self) -> None:
        assert webhook_template().image == webhook_template().image

    def test_image_changes_with_definition(self) -> None:
        assert webhook_template(version="2.8.1").image != webhook_template(version="2.8.0").image

    def test_image_uses_name(self) -> None:
        assert webhook_template(name="relay-test").image.startswith("relay-test:")

    def test_template_is_immutable(self) -> None:
        template = webhook_template()

        with pytest.raises(ValidationError):
            template.base_image = "alpine"  # type: ignore[misc]

    def test_rejects_invalid_port(self) -> None:
        with pytest.raises(ValidationError):
            EnvironmentTemplate(name="x", base_image="alpine", entrypoint=("/bin/true",), exposed_port=0)
