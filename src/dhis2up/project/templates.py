from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List

from dhis2up.errors import ProvisionError

DHIS_CONF = """\
# Hibernate SQL dialect
connection.dialect = org.hibernate.dialect.PostgreSQLDialect
# JDBC driver class
connection.driver_class = org.postgresql.Driver
# JDBC driver connection URL.
connection.url = jdbc:postgresql://db:5432/dhis
# Database username
connection.username = dhis
# Database password
connection.password = dhis
# Database schema behavior
connection.schema = update
"""

LOG4J2_XML = """\
<?xml version="1.0" encoding="UTF-8"?>
<Configuration status="INFO">
    <Appenders>
        <Console name="Console" target="SYSTEM_OUT">
            <PatternLayout pattern="%d{yyyy-MM-dd HH:mm:ss.SSS} %-5level %logger{36} - %msg%n"/>
        </Console>
    </Appenders>
    <Loggers>
        <Root level="INFO">
            <AppenderRef ref="Console"/>
        </Root>
    </Loggers>
</Configuration>
"""


@dataclass(frozen=True)
class ProjectLayout:
	root: Path

	@property
	def docker_dir(self) -> Path:
		return self.root / "docker"

	@property
	def env_file(self) -> Path:
		return self.root / ".env"

	@property
	def dhis_conf(self) -> Path:
		return self.docker_dir / "dhis.conf"

	@property
	def log4j2(self) -> Path:
		return self.docker_dir / "log4j2.xml"

	@property
	def compose_file(self) -> Path:
		return self.root / "docker-compose.yml"


def render_env(image: str, db_dump_url: str) -> str:
	return f"DHIS2_IMAGE={image}\nDHIS2_DB_DUMP_URL={db_dump_url}\n"


def create_layout(root: Path) -> ProjectLayout:
	layout = ProjectLayout(root=root)
	try:
		layout.docker_dir.mkdir(parents=True, exist_ok=True)
	except OSError as exc:
		raise ProvisionError(f"Failed to create project directory structure at {root}: {exc}") from exc
	return layout


def write_project_files(layout: ProjectLayout, image: str, db_dump_url: str) -> List[Path]:
	"""Write .env, docker/dhis.conf and docker/log4j2.xml; returns the paths written."""
	files = [
		(layout.env_file, render_env(image, db_dump_url)),
		(layout.dhis_conf, DHIS_CONF),
		(layout.log4j2, LOG4J2_XML),
	]
	written: List[Path] = []
	for path, content in files:
		try:
			path.write_text(content, encoding="utf-8")
		except OSError as exc:
			raise ProvisionError(f"Failed to write {path}: {exc}") from exc
		written.append(path)
	return written
