import pytest

from makesh.makesh_config import OptimizerConfig
from makesh.makesh_datatypes import Context
from makesh.makesh_index import FindIndex
from makesh.makesh_registry import ShellOptimizer


class StubIndex(FindIndex):
    """In-memory index answering from canned tables and recording calls."""
    def __init__(self, dirs=None, ext_files=None, resources=None, leaves=None,
                 ready=True, leaves_ready=True, unanswerable=()):
        self.dirs = dirs or {}
        self.ext_files = ext_files or {}
        self.resources = resources or {}
        self.leaves = leaves or {}
        self._ready = ready
        self._leaves_ready = leaves_ready
        self.unanswerable = set(unanswerable)
        self.init_calls = 0
        self.calls = []

    def ready(self):
        return self._ready

    def leaves_ready(self):
        return self._leaves_ready

    def initialize(self, options=None):
        self.init_calls += 1

    def list_directory(self, writer, dir):
        self.calls.append(("list_directory", dir))
        if dir in self.unanswerable:
            return False
        writer.write_words(self.dirs.get(dir, []))
        return True

    def list_extension_files_under(self, writer, chdir, root, ext):
        self.calls.append(("list_extension_files_under", chdir, root, ext))
        if root in self.unanswerable:
            return False
        writer.write_words(self.ext_files.get((chdir, root, ext), []))
        return True

    def list_java_resource_group(self, writer, dir):
        self.calls.append(("list_java_resource_group", dir))
        if dir in self.unanswerable:
            return False
        writer.write_words(self.resources.get(dir, []))
        return True

    def find_leaves(self, writer, dir, name, prunes, mindepth):
        self.calls.append(("find_leaves", dir, name, list(prunes), mindepth))
        if dir in self.unanswerable:
            return False
        writer.write_words(self.leaves.get((dir, name), []))
        return True


class ShellRecorder:
    """Stands in for /bin/sh: records each command and returns canned output."""
    def __init__(self, outputs=None, default=""):
        self.outputs = outputs or {}
        self.default = default
        self.commands = []

    def __call__(self, command):
        self.commands.append(command)
        return self.outputs.get(command, self.default)


@pytest.fixture
def stub_index():
    return StubIndex()


@pytest.fixture
def shell():
    return ShellRecorder(default="<from shell>")


@pytest.fixture
def make_optimizer():
    def _make(index=None, **config):
        return ShellOptimizer(OptimizerConfig(**config), index=index if index is not None else StubIndex())
    return _make


@pytest.fixture
def make_context(shell):
    def _make(**variables):
        return Context(variables, shell_runner=shell)
    return _make


# Makefile command texts for each shipped pattern.
ROT13_CMD = "echo $(1) | tr 'a-zA-Z' 'n-za-mN-ZA-M'"
ASSETS_CMD = "if [ -d $(1) ] ; then cd $(1) ; find ./ -not -name '.*' -and -type f -and -not -type l ; fi"
JAVA_CMD = 'cd $(LOCAL_PATH) ; find -L $(1) -name "*.java" -and -not -name ".*"'
PROTO_CMD = 'cd $(LOCAL_PATH) ; find -L $(1) -name "*.proto" -and -not -name ".*"'
RESOURCE_CMD = (
    'cd $(TOP_DIR)$(LOCAL_PATH)/$(dir) && find . -type d -a -name ".svn" -prune -o -type f -a '
    '\\! -name "*.java" -a \\! -name "package.html" -a \\! -name "overview.html" -a '
    '\\! -name ".*.swp" -a \\! -name ".DS_Store" -a \\! -name "*~" -print '
)
CLEANSPEC_CMD = "build/tools/findleaves.py --prune=$(OUT_DIR) --prune=.repo --prune=.git . CleanSpec.mk"
SUBDIR_MK_CMD = "build/tools/findleaves.py --prune=$(OUT_DIR) --prune=.repo --prune=.git $(subdirs) Android.mk"
FIRST_MK_CMD = "build/tools/findleaves.py --prune=$(OUT_DIR) --prune=.repo --prune=.git --mindepth=2 $(1) Android.mk"
