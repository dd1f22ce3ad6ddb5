import unittest

from agentviz.path_utils import infer_project_dir, is_within, normalize_path


class NormalizePathTests(unittest.TestCase):
    def test_descendant_becomes_relative(self) -> None:
        self.assertEqual(normalize_path("/home/user/project/src/index.js", "/home/user/project"), "src/index.js")

    def test_trailing_separator_on_project_dir_is_ignored(self) -> None:
        self.assertEqual(normalize_path("/home/user/project/src/index.js", "/home/user/project/"), "src/index.js")

    def test_project_root_is_dot(self) -> None:
        self.assertEqual(normalize_path("/home/user/project", "/home/user/project"), ".")
        self.assertEqual(normalize_path("/home/user/project", "/home/user/project/"), ".")

    def test_outside_paths_are_unchanged(self) -> None:
        self.assertEqual(normalize_path("/other/path/file.js", "/home/user/project"), "/other/path/file.js")

    def test_sibling_with_shared_prefix_is_not_a_descendant(self) -> None:
        self.assertEqual(normalize_path("/home/user/project2/a.py", "/home/user/project"), "/home/user/project2/a.py")

    def test_windows_separators(self) -> None:
        self.assertEqual(normalize_path("C:\\work\\repo\\src\\a.py", "C:\\work\\repo"), "src\\a.py")
        self.assertEqual(normalize_path("C:\\work\\repo\\src\\a.py", "C:\\work\\repo\\"), "src\\a.py")

    def test_missing_inputs(self) -> None:
        self.assertIsNone(normalize_path(None, "/home/user/project"))
        self.assertEqual(normalize_path("", "/home/user/project"), "")
        self.assertEqual(normalize_path("/a/b", None), "/a/b")
        self.assertEqual(normalize_path("/a/b", ""), "/a/b")


class ProjectHelpersTests(unittest.TestCase):
    def test_is_within_prefix_or_substring(self) -> None:
        self.assertTrue(is_within("/home/user/project/src/a.py", "/home/user/project"))
        self.assertTrue(is_within("cd /home/user/project && ls", "/home/user/project"))
        self.assertFalse(is_within("/tmp/elsewhere", "/home/user/project"))
        self.assertFalse(is_within(None, "/home/user/project"))

    def test_infer_project_dir_picks_most_common_prefix(self) -> None:
        paths = [
            "/home/user/project/src/a.py",
            "/home/user/project/README.md",
            "/tmp/scratch/notes/x.txt",
            "relative/path.py",
        ]
        self.assertEqual(infer_project_dir(paths), "/home/user/project")

    def test_infer_project_dir_without_usable_paths(self) -> None:
        self.assertIsNone(infer_project_dir([]))
        self.assertIsNone(infer_project_dir(["/short", "relative/a/b/c"]))

    def test_infer_project_dir_never_counts_the_file_name(self) -> None:
        self.assertIsNone(infer_project_dir(["/tmp/proj/notes.md"]))
        self.assertEqual(infer_project_dir(["/tmp/proj/docs/notes.md"]), "/tmp/proj/docs")


if __name__ == "__main__":
    unittest.main()
