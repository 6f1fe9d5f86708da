"""
Run a lifecycle verb, e.g. `python -m winpkg start hbase master regionserver`.
"""

import sys
from typing import List, Optional

from winpkg.scripts import component
from winpkg.scripts.utils import error


VERBS = {"install": component.install,
         "uninstall": component.uninstall,
         "configure": component.configure,
         "start": component.start,
         "stop": component.stop}


def main(argv: Optional[List[str]] = None):
    argv = sys.argv[1:] if argv is None else argv
    if not argv or argv[0] not in VERBS:
        error("Usage: python -m winpkg ({}) [ARGS...]".format("|".join(VERBS)), exit=2)
    verb, *rest = argv
    return VERBS[verb](argv=rest)


if __name__ == "__main__":
    main()
