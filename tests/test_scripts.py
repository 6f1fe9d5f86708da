from contextlib import redirect_stderr, redirect_stdout
from inspect import cleandoc
from io import StringIO
import os
import os.path
import tempfile
import unittest
from unittest.mock import ANY, patch

from winpkg.__main__ import main
from winpkg.plumbing.common import Credential, LOCAL_SYSTEM, Result, State
from winpkg.scripts import component as scripts
from winpkg.scripts.utils import ENTRYPOINTS, ENV_PASSWORD, parse_properties
from winpkg.tasks import component as lifecycle

from .scripts import (no_args, with_credential, with_flags, with_optional_credential,
                      with_settings, with_strings)


class TestEntrypoints(unittest.TestCase):

    def test_entrypoints(self):
        self.assertIn("winpkg-no-args=tests.scripts:no_args", ENTRYPOINTS)
        self.assertIn("winpkg-install=winpkg.scripts.component:install", ENTRYPOINTS)
        self.assertIn("winpkg-stop=winpkg.scripts.component:stop", ENTRYPOINTS)

    def test_doc(self):
        self.assertEqual(cleandoc(no_args.__doc__), "Usage: winpkg-no-args")

    def test_args_strings(self):
        self.assertEqual(with_strings({"COMPONENT": "hbase", "ROLES": ["master", "rest"]}),
                         ("hbase", "master rest"))

    def test_args_argv(self):
        self.assertEqual(with_strings(argv=["--debug", "hbase", "master"]), ("hbase", "master"))

    def test_args_flags(self):
        self.assertEqual(with_flags({"--force": True, "<names>": ["a", "b"]}),
                         (True, ["a", "b"]))

    def test_args_settings(self):
        with tempfile.TemporaryDirectory() as tempdir:
            path = os.path.join(tempdir, "winpkg.ini")
            with open(path, "w", encoding="utf-8") as f:
                f.write("[installer]\npackages = /srv/packages\n")
            settings = with_settings(argv=["--config={}".format(path)])
        self.assertEqual(settings.packages, "/srv/packages")

    def test_credential_default(self):
        self.assertEqual(with_credential({"--username": None}), LOCAL_SYSTEM)

    def test_credential_optional(self):
        self.assertIsNone(with_optional_credential({"--username": None}))

    def test_credential_builtin(self):
        credential = with_credential({"--username": r"NT AUTHORITY\NetworkService"})
        self.assertEqual(credential, Credential(r"NT AUTHORITY\NetworkService"))

    @patch.dict(os.environ, {ENV_PASSWORD: "secret"})
    def test_credential_env_password(self):
        credential = with_credential({"--username": "hadoop"})
        self.assertEqual(credential.username, "hadoop")
        self.assertEqual(str(credential.password), "secret")

    @patch("winpkg.scripts.utils.getpass", return_value="prompted")
    def test_credential_prompt(self, getpass):
        with patch.dict(os.environ):
            os.environ.pop(ENV_PASSWORD, None)
            credential = with_credential({"--username": "hadoop"})
        self.assertEqual(str(credential.password), "prompted")
        getpass.assert_called_once()


class TestProperties(unittest.TestCase):

    def test_parse(self):
        self.assertEqual(parse_properties(["a=1", "b=", "c=x=y"]), {"a": "1", "b": "", "c": "x=y"})

    def test_parse_invalid(self):
        with redirect_stderr(StringIO()):
            with self.assertRaises(SystemExit) as ctx:
                parse_properties(["novalue"])
        self.assertEqual(ctx.exception.code, 2)


class TestCommands(unittest.TestCase):

    def run_script(self, script, opts):
        out = StringIO()
        with redirect_stdout(out):
            script(opts)
        return out.getvalue()

    def test_install_unsupported(self):
        err = StringIO()
        with redirect_stderr(err):
            with self.assertRaises(SystemExit) as ctx:
                scripts.install({"--username": None, "COMPONENT": "hive", "ROOT": "/opt/hdp",
                                 "ROLES": ["master"]})
        self.assertEqual(ctx.exception.code, 1)
        self.assertIn("hive", err.getvalue())

    @patch.object(lifecycle, "install")
    def test_install(self, install):
        layout = lifecycle.get_layout(lifecycle.HBASE, "/opt/hdp")
        install.return_value = Result(State.success, layout)
        out = self.run_script(scripts.install, {"--username": None, "COMPONENT": "hbase",
                                                "ROOT": "/opt/hdp", "ROLES": ["master", "rest"]})
        install.assert_called_once_with("hbase", "/opt/hdp", LOCAL_SYSTEM, "master rest", ANY)
        self.assertIn(layout.home, out)

    @patch.object(lifecycle, "uninstall", return_value=Result(State.success))
    def test_uninstall(self, uninstall):
        out = self.run_script(scripts.uninstall, {"--yes": True, "COMPONENT": "hbase",
                                                  "ROOT": "/opt/hdp"})
        uninstall.assert_called_once_with("hbase", "/opt/hdp")
        self.assertIn("Removed", out)

    @patch.object(lifecycle, "uninstall")
    @patch("builtins.input", return_value="n")
    def test_uninstall_declined(self, input_, uninstall):
        with redirect_stderr(StringIO()):
            with self.assertRaises(SystemExit):
                scripts.uninstall({"--yes": False, "COMPONENT": "hbase", "ROOT": "/opt/hdp"})
        uninstall.assert_not_called()

    @patch.object(lifecycle, "configure", return_value=Result(State.success))
    def test_configure(self, configure):
        self.run_script(scripts.configure, {"--username": None, "--all-folders": True,
                                            "COMPONENT": "hbase", "ROOT": "/opt/hdp",
                                            "<property>": ["hbase.tmp.dir=/tmp/hbase", "x="]})
        configure.assert_called_once_with("hbase", "/opt/hdp", LOCAL_SYSTEM,
                                          {"hbase.tmp.dir": "/tmp/hbase", "x": ""}, True)

    @patch.object(lifecycle, "start_service", return_value=Result(State.success))
    def test_start(self, start_service):
        self.run_script(scripts.start, {"--username": None, "--root": None,
                                        "COMPONENT": "hbase", "ROLES": ["master"]})
        start_service.assert_called_once_with("hbase", "master", None, None, ANY)

    @patch.object(lifecycle, "start_service", return_value=Result(State.success))
    @patch.dict(os.environ, {ENV_PASSWORD: "secret"})
    def test_start_with_root(self, start_service):
        self.run_script(scripts.start, {"--username": "hadoop", "--root": "/opt/hdp",
                                        "COMPONENT": "hbase", "ROLES": ["master"]})
        start_service.assert_called_once_with("hbase", "master",
                                              lifecycle.get_layout(lifecycle.HBASE, "/opt/hdp"),
                                              ANY, ANY)
        credential = start_service.call_args[0][3]
        self.assertEqual(credential.username, "hadoop")
        self.assertEqual(str(credential.password), "secret")

    @patch.object(lifecycle, "stop_service",
                  return_value=Result(State.success, ["regionserver", "master"]))
    def test_stop(self, stop_service):
        out = self.run_script(scripts.stop, {"COMPONENT": "hbase",
                                             "ROLES": ["regionserver", "master"]})
        stop_service.assert_called_once_with("hbase", "regionserver master")
        self.assertIn("Stopped regionserver, master", out)

    @patch.object(lifecycle, "stop_service", return_value=Result(State.success, ["master"]))
    def test_stop_partial(self, stop_service):
        err = StringIO()
        with redirect_stderr(err):
            out = self.run_script(scripts.stop, {"COMPONENT": "hbase",
                                                 "ROLES": ["regionserver", "master"]})
        self.assertIn("Stopped master", out)
        self.assertNotIn("regionserver", out)
        self.assertIn("Failed to stop regionserver", err.getvalue())


class TestMain(unittest.TestCase):

    def test_unknown_verb(self):
        with redirect_stderr(StringIO()):
            with self.assertRaises(SystemExit) as ctx:
                main(["restart"])
        self.assertEqual(ctx.exception.code, 2)

    @patch.object(lifecycle, "stop_service", return_value=Result(State.success, ["master"]))
    def test_dispatch(self, stop_service):
        with redirect_stdout(StringIO()):
            main(["stop", "hbase", "master"])
        stop_service.assert_called_once_with("hbase", "master")


if __name__ == "__main__":
    unittest.main()
