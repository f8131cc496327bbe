import shutil
import subprocess
from typing import List, Optional, Tuple

from yaml import YAMLError, safe_load


RESTART_MODES = ('systemctl', 'service', 'compose')


def get_compose_command(shutil_module) -> List[str]:
    """Determine docker compose command (plugin or standalone).

    Accepts the calling module's `shutil` so callers can allow monkeypatching
    on their own imported object.
    """
    if shutil_module.which('docker') is not None:
        return ['docker', 'compose']
    return ['docker-compose']


def build_restart_commands(mode: str, target: str, shutil_module=shutil) -> List[List[str]]:
    """Commands that restart the managed containers, the first one being the restart itself."""
    if mode == 'systemctl':
        return [['systemctl', 'restart', target], ['systemctl', 'status', target]]
    if mode == 'service':
        return [['service', target, 'restart'], ['service', target, 'status']]
    if mode == 'compose':
        return [[*get_compose_command(shutil_module), '-f', target, 'up', '--no-build', '-d']]
    raise ValueError(f"Invalid restart type: {mode}")


def list_compose_services(compose_file: str, logger) -> List[str]:
    try:
        with open(compose_file, 'r') as f:
            data = safe_load(f) or {}
    except (OSError, YAMLError) as e:
        logger.warning(f"Could not read compose file {compose_file}: {e}")
        return []
    services = data.get('services') if isinstance(data, dict) else None
    return list(services or {})


def restart_containers(
    mode: str,
    target: str,
    logger,
    timeout: Optional[int] = None,
    shutil_module=shutil,
) -> Tuple[bool, str]:
    """Restart the managed containers. Returns (ok, combined command output)."""
    commands = build_restart_commands(mode, target, shutil_module)
    logger.info("Trying to restart containers ...")
    if mode == 'compose':
        services = list_compose_services(target, logger)
        if services:
            logger.info(f"Bringing up compose services: {', '.join(services)}")

    output = []
    restart_cmd, status_cmds = commands[0], commands[1:]
    try:
        result = subprocess.run(restart_cmd, capture_output=True, text=True, check=True, timeout=timeout)
        output.append(result.stdout + result.stderr)
    except subprocess.CalledProcessError as e:
        return False, f"{' '.join(restart_cmd)} failed: {e.stderr or e.stdout or e}"
    except (OSError, subprocess.TimeoutExpired) as e:
        return False, f"{' '.join(restart_cmd)} failed: {e}"

    for cmd in status_cmds:
        # status exits non-zero for inactive units; the output is all we want
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False, timeout=timeout)
            output.append(result.stdout + result.stderr)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"Status command {' '.join(cmd)} failed: {e}")
    return True, ''.join(output).strip()
