from __future__ import annotations

import logging

from ..pipeline import StepContext
from .common import write_host_file

logger = logging.getLogger(__name__)

VENV_DIR = "/opt/dp_cli_venv"
REPO_URL = "https://github.com/RickLee-kr/Stellar-appliance-cli"
DOWNLOAD_DIR = "/tmp/dp_cli_download"
CLI_USER = "stellar"

REQUIRED_PACKAGES = ["python3-pip", "python3-venv", "wget", "curl", "unzip"]

LOGIN_WRAPPER = """\
#!/bin/bash
[ $# -ge 1 ] && exit 1
cd /tmp || exit 1
exec sudo /usr/local/bin/aella_cli
"""


def venv_wrapper(command: str) -> str:
    return f'#!/bin/bash\nexec "{VENV_DIR}/bin/{command}" "$@"\n'


class InstallDpCliStep:
    step_id = "10_install_dp_cli"
    display_name = "Install DP Appliance CLI package"

    def run(self, ctx: StepContext) -> None:
        run = ctx.executor.run

        ctx.packages.update()
        ctx.packages.ensure_installed(REQUIRED_PACKAGES)

        zip_path = f"{DOWNLOAD_DIR}/Stellar-appliance-cli-main.zip"
        src_dir = f"{DOWNLOAD_DIR}/Stellar-appliance-cli-main"
        run(["rm", "-rf", DOWNLOAD_DIR])
        run(["mkdir", "-p", DOWNLOAD_DIR])
        run(["wget", "-q", "-O", zip_path, f"{REPO_URL}/archive/refs/heads/main.zip"])
        run(["unzip", "-q", zip_path, "-d", DOWNLOAD_DIR])

        python = f"{VENV_DIR}/bin/python"
        run(["python3", "-m", "venv", VENV_DIR])
        run([python, "-m", "pip", "install", "--upgrade", "pip", "setuptools<81", "wheel"])
        run([python, "-m", "pip", "install", "--upgrade", "--force-reinstall", src_dir])
        run([python, "-c", "import dp_cli"])

        write_host_file(ctx, "/usr/local/bin/aella_cli", venv_wrapper("aella_cli"), mode=0o755)
        write_host_file(ctx, "/usr/bin/aella_cli", LOGIN_WRAPPER, mode=0o755)
        run(["usermod", "-a", "-G", "syslog", CLI_USER], check=False)
        logger.info("DP appliance CLI installed into %s", VENV_DIR)
