import os
import sys

# project root and tests/ on the path so `ui_explorer` and `fakes` import without installation
_tests_dir = os.path.dirname(os.path.abspath(__file__))
for _path in (os.path.dirname(_tests_dir), _tests_dir):
    if _path not in sys.path:
        sys.path.insert(0, _path)
