from __future__ import annotations

import argparse
import re
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

import requests

from dhis2up.config import PortDefaults, StackConfig, load_config
from dhis2up.console import RunLog, banner, err_console, info, warn
from dhis2up.errors import ProvisionError
from dhis2up.ports.negotiate import ConsolePrompter, PortNegotiator, PortRequest, Prompter
from dhis2up.ports.probe import PortProbe, select_probe
from dhis2up.project.compose import customize_compose_file, download_compose
from dhis2up.project.templates import create_layout, write_project_files
from dhis2up.stack.docker import Runner, run, start_stack, update_system_packages, use_default_context, verify_docker
from dhis2up.stack.readiness import wait_for_startup

RUN_LOG_NAME = Path(".dhis2up") / "provision.log"
PROJECT_NAME_RX = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

# Negotiated in this order; keys match project.compose.CONTAINER_PORTS.
PORT_PROMPTS = (
    ("web", "DHIS2 web UI"),
    ("debug", "Java debugger"),
    ("jmx", "JMX monitoring"),
    ("postgres", "PostgreSQL database"),
)


@dataclass(frozen=True)
class ProjectChoice:
    name: str
    root: Path
    image: str


def preflight(skip_system_update: bool, runner: Runner = run, run_log: Optional[RunLog] = None) -> None:
    if skip_system_update:
        info("Skipping system package update.")
    else:
        banner("Updating system packages...")
        update_system_packages(runner)

    banner("Verifying Docker Desktop integration for WSL2...")
    verify_docker(runner)

    banner("Setting Docker context to 'default' for WSL2 compatibility...")
    use_default_context(runner)
    if run_log:
        run_log.event("preflight", "docker_ok")


def gather_project(prompter: Prompter, base_dir: Path, config: StackConfig,
                   project: Optional[str] = None, image: Optional[str] = None,
                   assume_yes: bool = False) -> ProjectChoice:
    banner("Setting up your DHIS2 instance")
    name = project
    if name is None:
        name = prompter.ask(
            "Enter a name for your DHIS2 project (this will be a subdirectory of "
            f"{base_dir}, e.g., my-dhis2-instance):"
        )
    name = name.strip()
    if not name:
        raise ProvisionError("Project name cannot be empty.")
    if not PROJECT_NAME_RX.match(name):
        raise ProvisionError(
            f"Invalid project name '{name}'. Use letters, digits, '-', '_' or '.', starting with a letter or digit."
        )

    root = base_dir / name
    banner(f"Your DHIS2 project '{name}' will be created at: {root}")
    if not assume_yes:
        info("Please ensure this is the desired location.")
        confirm = prompter.ask("Does this look correct? (y/N):").strip()
        if confirm not in ("y", "Y"):
            raise ProvisionError(
                "Operation cancelled by user. Please re-run from the desired parent directory."
            )

    chosen = image
    if chosen is None:
        chosen = prompter.ask(
            "Enter the DHIS2 Docker image to use (e.g., dhis2/core:2.41, dhis2/core-dev:latest). "
            f"Default is '{config.dhis2_image}':"
        ).strip()
    return ProjectChoice(name=name, root=root, image=chosen or config.dhis2_image)


def negotiate_ports(probe: PortProbe, prompter: Prompter, defaults: PortDefaults,
                    run_log: Optional[RunLog] = None) -> Dict[str, int]:
    banner("Configuring network ports for your DHIS2 instance...")
    negotiator = PortNegotiator(probe, prompter)
    ports: Dict[str, int] = {}
    for key, description in PORT_PROMPTS:
        desired = getattr(defaults, key)
        negotiated = negotiator.negotiate(PortRequest(description, desired))
        ports[key] = negotiated.port
        if run_log:
            run_log.event("ports", "negotiated", service=key, desired=desired, port=negotiated.port)
    return ports


def print_summary(choice: ProjectChoice, web_port: int) -> None:
    root = choice.root
    banner("DHIS2 Instance Setup Complete (or in progress)! Please check logs for final status.")
    lines = [
        f"Project Name: '{choice.name}'",
        f"Project Directory: '{root}'",
        f"DHIS2 Docker Image: '{choice.image}'",
        "",
        "To monitor the startup process (recommended):",
        f"    cd {root}",
        "    docker compose logs -f",
        "",
        "Once 'Server startup in [XXXXX] milliseconds' appears in the logs,",
        "you can access DHIS2 at:",
        f"    http://localhost:{web_port}",
        "",
        "Default Login Credentials (for Sierra Leone Demo Database):",
        "    Username: admin",
        "    Password: district",
        "",
        "--- Management Commands ---",
        f"To stop this instance:                     dhis2-stop {root}",
        f"To restart this instance:                  dhis2-restart {root}",
        f"To remove containers (keep data volumes):  dhis2-down {root}",
        f"To remove containers AND delete ALL data:  dhis2-down --volumes {root}",
        "",
        "--- Finding Your Instances (If You Forget) ---",
        "To list all running DHIS2 Docker Compose projects and their ports:",
        "    dhis2-instances",
        "To find the directory of a project from one of its containers:",
        f"    dhis2-where {choice.name}-web-1",
    ]
    for line in lines:
        info(line)


def provision(
    args: argparse.Namespace,
    base_dir: Path,
    prompter: Prompter,
    run_log: RunLog,
    config: Optional[StackConfig] = None,
    probe: Optional[PortProbe] = None,
    runner: Runner = run,
    session: Optional[requests.Session] = None,
    popen: Optional[Callable] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    if config is None:
        config = load_config(args.env_file)
    banner("DHIS2 Docker Instance Setup for WSL2 Ubuntu")

    preflight(args.skip_system_update, runner, run_log)
    # selected after preflight so the netstat.exe warning lands next to the port prompts
    if probe is None:
        probe = select_probe(use_sudo=config.use_sudo, verbose=args.verbose)

    choice = gather_project(prompter, base_dir, config, args.project, args.image, args.yes)
    run_log.event("project", "chosen", name=choice.name, image=choice.image)

    ports = negotiate_ports(probe, prompter, config.ports, run_log)

    banner(f"Creating project directory and files in {choice.root}...")
    layout = create_layout(choice.root)
    for path in write_project_files(layout, choice.image, config.db_dump_url):
        info(f"Created {path.relative_to(layout.root)}.")
    run_log.event("files", "written", root=layout.root)

    banner("Downloading official docker-compose.yml from DHIS2 Core GitHub repository and customizing it...")
    download_compose(
        config.compose_url,
        layout.compose_file,
        retries=config.download_retries,
        delay_s=config.download_retry_delay_s,
        timeout_s=config.download_timeout_s,
        session=session,
        sleep=sleep,
        run_log=run_log,
    )
    customize_compose_file(layout.compose_file, choice.name, ports, config.healthcheck)
    info("Modified docker-compose.yml with custom ports, volume names and DB healthcheck.")
    banner(f"All files generated successfully for project '{choice.name}'.")

    banner("Starting your DHIS2 instance...")
    info("This may take several minutes, especially on the first run "
         "(downloading DB dump, initializing database, starting DHIS2 application).")
    start_stack(layout.root, runner)
    run_log.event("startup", "compose_up")

    if args.no_wait:
        info("Skipping startup log monitoring (--no-wait).")
    else:
        sleep(config.startup_grace_s)
        banner("Monitoring DHIS2 startup logs...")
        info("The setup will continue once 'Server startup in [XXXXX] milliseconds' is detected.")
        detected = wait_for_startup(layout.root, config.readiness_timeout_s, popen=popen)
        run_log.event("readiness", "detected" if detected else "not_detected")
        if detected:
            info("DHIS2 Web application startup detected!")
        else:
            minutes = int(config.readiness_timeout_s // 60)
            warn(f"WARNING: DHIS2 Web application startup not detected within {minutes} minutes. "
                 "Please check logs manually for errors:")
            warn(f"  cd {layout.root} && docker compose logs")
        sleep(config.shutdown_grace_s)

    print_summary(choice, ports["web"])
    banner("Setup Finished.")
    run_log.append("PROVISION success")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="dhis2-up", description="Provision a local DHIS2 + PostgreSQL Docker stack in WSL2")
    p.add_argument("--project", help="Project name (subdirectory of --base-dir)")
    p.add_argument("--image", help="DHIS2 Docker image (default from config)")
    p.add_argument("--base-dir", help="Parent directory for the project (default: current directory)")
    p.add_argument("--env-file", help="Read DHIS2UP_* settings from this .env file")
    p.add_argument("--yes", action="store_true", help="Skip the location confirmation")
    p.add_argument("--skip-system-update", action="store_true", help="Do not run apt update/upgrade")
    p.add_argument("--no-wait", action="store_true", help="Do not follow the web logs for startup")
    p.add_argument("--verbose", action="store_true", help="Print port probe diagnostics")
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv if argv is not None else sys.argv[1:])

    base_dir = Path(args.base_dir).expanduser().resolve() if args.base_dir else Path.cwd()
    run_log = RunLog(base_dir / RUN_LOG_NAME)
    run_log.append("PROVISION start")
    try:
        return provision(args, base_dir, ConsolePrompter(), run_log)
    except ProvisionError as exc:
        run_log.append(f"PROVISION fail {exc.message}")
        banner(f"ERROR: {exc.message}", error=True)
        return exc.exit_code
    except (KeyboardInterrupt, EOFError):
        run_log.append("PROVISION interrupted")
        err_console.print("\nAborted.")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
