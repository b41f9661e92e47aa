"""Tests for template loading and substitution."""
import pytest

from panelo.core.errors import TemplateRenderError
from panelo.core.template_loader import TemplateLoader


@pytest.fixture
def loader():
    return TemplateLoader()


class TestRenderText:
    def test_exact_substitution(self):
        text = "server_name ${DOMAIN};\nproxy_set_header Host $host;\n"
        rendered = TemplateLoader.render_text(text, {'DOMAIN': "example.com"})
        assert rendered == "server_name example.com;\nproxy_set_header Host $host;\n"

    def test_unresolved_placeholder(self):
        with pytest.raises(TemplateRenderError) as exc:
            TemplateLoader.render_text("${A} ${B}", {'A': "1"})
        assert "B" in str(exc.value)


class TestBundledTemplates:
    """Test the templates shipped with panelo."""

    def test_all_present(self, loader):
        assert set(loader.list_templates()) >= {
            "my.cnf", "connection.env", "nginx.conf", "panel.conf",
            "app-site.conf", "filebrowser.json", "prometheus.yml",
        }

    def test_every_template_renders(self, loader):
        for name in loader.list_templates():
            context = {key: "value" for key in loader.placeholders(name)}
            assert "${" not in loader.render(name, context)

    def test_site_template(self, loader):
        rendered = loader.render("app-site.conf", {'APP_NAME': "blog", 'DOMAIN': "blog.example.com", 'PORT': "3005"})
        assert "server_name blog.example.com;" in rendered
        assert "server 127.0.0.1:3005;" in rendered
        assert "$remote_addr" in rendered

    def test_missing_template(self, loader):
        with pytest.raises(TemplateRenderError):
            loader.load("absent.conf")
