import os.path
import re

from setuptools import find_packages, setup

try:
    # Import all script providers so that ENTRYPOINTS gets populated.
    from winpkg.scripts import component  # noqa: F401
    from winpkg.scripts.utils import ENTRYPOINTS
except ImportError:
    # Avoid chicken-and-egg dependency requirements during initial installation.
    # This means you need to re-run setup in order to gain script entrypoints.
    ENTRYPOINTS = []


HERE = os.path.abspath(os.path.dirname(__file__))

README = os.path.join(HERE, "README.rst")


def version():
    with open(os.path.join(HERE, "winpkg", "__init__.py")) as init:
        return re.search(r"^__version__ = \"(.+)\"$", init.read(), re.M).group(1)


setup(name="winpkg",
      version=version(),
      description="Install, configure and run Hadoop-ecosystem components as Windows services.",
      long_description=open(README).read(),
      long_description_content_type="text/x-rst",
      platforms=["Windows"],
      python_requires=">=3.8",
      install_requires=["docopt", "jinja2"],
      extras_require={"test": ["pytest"]},
      packages=find_packages(exclude=["tests", "tests.*"]),
      package_data={"winpkg.plumbing": ["templates/*.j2"]},
      entry_points={"console_scripts": ENTRYPOINTS})
