from dhis2up.config import DEFAULT_DB_DUMP_URL
from dhis2up.project.templates import ProjectLayout, create_layout, render_env, write_project_files


def test_render_env():
    assert render_env("dhis2/core:2.41", "https://dump/db.sql.gz") == (
        "DHIS2_IMAGE=dhis2/core:2.41\nDHIS2_DB_DUMP_URL=https://dump/db.sql.gz\n"
    )


def test_layout_paths(tmp_path):
    layout = ProjectLayout(root=tmp_path / "demo")
    assert layout.env_file == tmp_path / "demo" / ".env"
    assert layout.dhis_conf == tmp_path / "demo" / "docker" / "dhis.conf"
    assert layout.log4j2 == tmp_path / "demo" / "docker" / "log4j2.xml"
    assert layout.compose_file == tmp_path / "demo" / "docker-compose.yml"


def test_write_project_files(tmp_path):
    layout = create_layout(tmp_path / "demo")
    assert layout.docker_dir.is_dir()

    written = write_project_files(layout, "dhis2/core-dev:latest", DEFAULT_DB_DUMP_URL)

    assert written == [layout.env_file, layout.dhis_conf, layout.log4j2]
    assert "DHIS2_IMAGE=dhis2/core-dev:latest" in layout.env_file.read_text()
    conf = layout.dhis_conf.read_text()
    assert "connection.url = jdbc:postgresql://db:5432/dhis" in conf
    assert "connection.username = dhis" in conf
    assert "encryption.password" not in conf
    assert layout.log4j2.read_text().startswith('<?xml version="1.0" encoding="UTF-8"?>')


def test_create_layout_is_idempotent(tmp_path):
    create_layout(tmp_path / "demo")
    create_layout(tmp_path / "demo")
    assert (tmp_path / "demo" / "docker").is_dir()
