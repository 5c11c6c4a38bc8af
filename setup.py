"""Setup script for famlisync, the linked family calendar sync engine."""

import os
from pathlib import Path

from setuptools import find_packages, setup
from setuptools.command.develop import develop
from setuptools.command.install import install


def post_install_setup():
    """Create the default data directory and print where things live."""
    try:
        data_dir = Path.home() / ".local" / "share" / "famlisync"
        calendars_dir = data_dir / "calendars"

        for directory in [data_dir, calendars_dir]:
            directory.mkdir(parents=True, exist_ok=True)
            if hasattr(os, "chmod"):
                os.chmod(directory, 0o755)

        if not (data_dir / "family.json").exists():
            print("\n" + "=" * 60)
            print("famlisync installation complete")
            print("=" * 60)
            print(f"Data directory: {data_dir}")
            print(f"Calendar files: {calendars_dir}")
            print("\nNext steps:")
            print("1. Put one <calendar_id>.ics file per calendar in the calendar directory")
            print("2. Describe family members in family.json in the data directory")
            print("3. Run 'famlisync agenda' to see the grouped family agenda")
            print("=" * 60)

    except OSError as e:
        print(f"Warning: Post-install setup failed: {e}")
        print("You may need to create the data directory manually.")


class PostInstallCommand(install):
    """Custom install command with post-install setup."""

    def run(self):
        install.run(self)
        post_install_setup()


class PostDevelopCommand(develop):
    """Custom develop command with post-install setup."""

    def run(self):
        develop.run(self)
        post_install_setup()


readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

requirements_file = Path(__file__).parent / "requirements.txt"
requirements = []
dev_requirements = []

if requirements_file.exists():
    content = requirements_file.read_text().strip()
    lines = content.split("\n")

    for line in lines:
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        # Separate test dependencies
        if "pytest" in line:
            dev_requirements.append(line)
        else:
            requirements.append(line)

setup(
    name="famlisync",
    version="0.1.0",
    description="Keep one family event in step across several people's calendars",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="famlisync developers",
    packages=find_packages(include=["famlisync", "famlisync.*"]),
    include_package_data=True,
    install_requires=requirements,
    extras_require={
        "dev": dev_requirements,
        "test": dev_requirements,
    },
    python_requires=">=3.11",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Environment :: Console",
        "Intended Audience :: End Users/Desktop",
        "Operating System :: POSIX :: Linux",
        "Operating System :: MacOS",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Office/Business :: Scheduling",
        "Framework :: AsyncIO",
    ],
    keywords="calendar ics icalendar family sync recurrence async",
    entry_points={
        "console_scripts": [
            "famlisync=famlisync.__main__:main",
        ],
    },
    cmdclass={
        "install": PostInstallCommand,
        "develop": PostDevelopCommand,
    },
    zip_safe=False,
    platforms=["linux", "macos"],
)
