import os
from typing import Any, Dict, Mapping, Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, ValidationError

from dhis2up.errors import ProvisionError

ENV_PREFIX = "DHIS2UP_"

DEFAULT_DHIS2_IMAGE = "dhis2/core-dev:latest"
DEFAULT_DB_DUMP_URL = "https://databases.dhis2.org/sierra-leone/dev/dhis2-db-sierra-leone.sql.gz"
DEFAULT_COMPOSE_URL = "https://raw.githubusercontent.com/dhis2/dhis2-core/master/docker-compose.yml"


class PortDefaults(BaseModel):
	web: int = Field(default=8080, ge=1024, le=65535)
	debug: int = Field(default=8081, ge=1024, le=65535)
	jmx: int = Field(default=9011, ge=1024, le=65535)
	postgres: int = Field(default=5432, ge=1024, le=65535)


class HealthcheckOverrides(BaseModel):
	"""Values written into the database health check of the compose file."""

	start_period: str = "600s"
	interval: str = "10s"
	timeout: str = "5s"
	retries: int = Field(default=50, ge=1)


class StackConfig(BaseModel):
	dhis2_image: str = DEFAULT_DHIS2_IMAGE
	db_dump_url: str = DEFAULT_DB_DUMP_URL
	compose_url: str = DEFAULT_COMPOSE_URL
	ports: PortDefaults = Field(default_factory=PortDefaults)
	healthcheck: HealthcheckOverrides = Field(default_factory=HealthcheckOverrides)
	download_retries: int = Field(default=5, ge=1)
	download_retry_delay_s: float = Field(default=5.0, ge=0)
	download_timeout_s: float = Field(default=30.0, gt=0)
	startup_grace_s: float = Field(default=15.0, ge=0)
	readiness_timeout_s: float = Field(default=1800.0, gt=0)
	shutdown_grace_s: float = Field(default=5.0, ge=0)
	use_sudo: bool = True


# env suffix -> (section, field); section None means top level
_ENV_FIELDS = {
	"IMAGE": (None, "dhis2_image"),
	"DB_DUMP_URL": (None, "db_dump_url"),
	"COMPOSE_URL": (None, "compose_url"),
	"WEB_PORT": ("ports", "web"),
	"DEBUG_PORT": ("ports", "debug"),
	"JMX_PORT": ("ports", "jmx"),
	"PG_PORT": ("ports", "postgres"),
	"DOWNLOAD_RETRIES": (None, "download_retries"),
	"DOWNLOAD_RETRY_DELAY": (None, "download_retry_delay_s"),
	"DOWNLOAD_TIMEOUT": (None, "download_timeout_s"),
	"STARTUP_GRACE": (None, "startup_grace_s"),
	"READINESS_TIMEOUT": (None, "readiness_timeout_s"),
	"USE_SUDO": (None, "use_sudo"),
}


def _from_environ(environ: Mapping[str, str]) -> Dict[str, Any]:
	data: Dict[str, Any] = {}
	for suffix, (section, field) in _ENV_FIELDS.items():
		raw = environ.get(ENV_PREFIX + suffix)
		if raw is None or not raw.strip():
			continue
		if section is None:
			data[field] = raw.strip()
		else:
			data.setdefault(section, {})[field] = raw.strip()
	return data


def load_config(env_file: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> StackConfig:
	"""Build the stack configuration from defaults, a .env file and DHIS2UP_* variables.

	When ``environ`` is given it is used verbatim and no .env file is read.
	"""
	if environ is None:
		load_dotenv(env_file or find_dotenv(usecwd=True))
		environ = os.environ
	try:
		return StackConfig.model_validate(_from_environ(environ))
	except ValidationError as exc:
		raise ProvisionError(f"Invalid {ENV_PREFIX}* configuration:\n{exc}") from exc
