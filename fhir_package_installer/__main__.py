"""
Install packages into the local cache from the command line.

    python -m fhir_package_installer hl7.fhir.us.core@6.1.0 [more packages...]

Configuration comes from the FPI_* environment variables.
"""
import asyncio
import logging
import sys

from fhir_package_installer.core.dependencies import load_config_from_env
from fhir_package_installer.domain.errors import FhirPackageInstallerError
from fhir_package_installer.services.installer import FhirPackageInstaller

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


async def install_all(packages: list[str]) -> None:
    installer = FhirPackageInstaller(load_config_from_env())
    for package in packages:
        await installer.install(package)
        print(f"Installed {package} into {installer.get_cache_path()}")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python -m fhir_package_installer <package>[@version] ...")
        sys.exit(2)

    try:
        asyncio.run(install_all(sys.argv[1:]))
    except FhirPackageInstallerError as e:
        print(f"\nError: {e}")
        sys.exit(1)
