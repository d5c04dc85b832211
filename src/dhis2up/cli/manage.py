import argparse
import sys
from pathlib import Path
from typing import List

from dhis2up.stack.docker import compose, run

INSTANCES_FORMAT = (
	"table {{.ID}}\t{{.Names}}\t{{.Image}}\t{{.Ports}}\t{{.Status}}"
	'\t{{.Label "com.docker.compose.project"}}\t{{.Label "com.docker.compose.service"}}'
)
WORKING_DIR_FORMAT = '{{ index .Config.Labels "com.docker.compose.project.working_dir" }}'


def _project_dir(raw: str) -> Path:
	path = Path(raw).expanduser().resolve()
	if not (path / "docker-compose.yml").is_file():
		print(f"No docker-compose.yml in {path}. Pass the directory created by dhis2-up.", file=sys.stderr)
		raise SystemExit(2)
	return path


def _compose_cmd(prog: str, description: str, compose_args: List[str], argv: List[str] | None,
				 volumes_flag: bool = False, service_flag: bool = False) -> int:
	p = argparse.ArgumentParser(prog=prog, description=description)
	p.add_argument("project_dir", nargs="?", default=".", help="DHIS2 project directory (default: current)")
	if volumes_flag:
		p.add_argument("--volumes", action="store_true", help="Also delete ALL data volumes (fresh start)")
	if service_flag:
		p.add_argument("--service", help="Only this service (e.g. web, db)")
	args = p.parse_args(argv if argv is not None else sys.argv[1:])
	project_dir = _project_dir(args.project_dir)
	extra = list(compose_args)
	if getattr(args, "volumes", False):
		extra.append("-v")
	if getattr(args, "service", None):
		extra.append(args.service)
	try:
		return compose(project_dir, extra, check=False).returncode
	except OSError as exc:
		print(f"could not run docker: {exc}", file=sys.stderr)
		return 1


def stop(argv: List[str] | None = None) -> int:
	return _compose_cmd("dhis2-stop", "Stop a DHIS2 instance", ["stop"], argv)


def restart(argv: List[str] | None = None) -> int:
	return _compose_cmd("dhis2-restart", "Restart a DHIS2 instance", ["restart"], argv)


def down(argv: List[str] | None = None) -> int:
	return _compose_cmd("dhis2-down", "Remove a DHIS2 instance's containers (data volumes kept unless --volumes)", ["down"], argv, volumes_flag=True)


def logs(argv: List[str] | None = None) -> int:
	return _compose_cmd("dhis2-logs", "Follow a DHIS2 instance's logs", ["logs", "-f"], argv, service_flag=True)


def instances(argv: List[str] | None = None) -> int:
	"""List running containers with their compose project and service labels."""
	p = argparse.ArgumentParser(prog="dhis2-instances", description=instances.__doc__)
	p.parse_args(argv if argv is not None else sys.argv[1:])
	try:
		return run(["docker", "ps", "--format", INSTANCES_FORMAT], check=False).returncode
	except OSError as exc:
		print(f"could not run docker: {exc}", file=sys.stderr)
		return 1


def where(argv: List[str] | None = None) -> int:
	p = argparse.ArgumentParser(prog="dhis2-where", description="Print the project directory of a compose container")
	p.add_argument("container", help="Container name or id, e.g. my-dhis2-web-1")
	args = p.parse_args(argv if argv is not None else sys.argv[1:])
	try:
		res = run(["docker", "inspect", args.container, "--format", WORKING_DIR_FORMAT], check=False, capture=True)
	except OSError as exc:
		print(f"could not run docker: {exc}", file=sys.stderr)
		return 1
	if res.returncode != 0:
		print((res.stderr or "").strip() or f"No such container: {args.container}", file=sys.stderr)
		return res.returncode
	working_dir = (res.stdout or "").strip()
	if not working_dir or working_dir == "<no value>":
		print(f"{args.container} was not started by docker compose", file=sys.stderr)
		return 1
	print(working_dir)
	return 0
