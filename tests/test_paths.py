import os
import tempfile
import unittest
from pathlib import Path

from accio import paths
from accio.errors import EntryNotFound, PathTraversalAttempt


class NormalizeRelativePathTests(unittest.TestCase):
    def test_root_markers_are_stripped(self):
        self.assertEqual(paths.normalize_relative_path("/etc/passwd"), "etc/passwd")
        self.assertEqual(paths.normalize_relative_path("//etc//passwd"), "etc/passwd")

    def test_backslashes_become_slashes(self):
        self.assertEqual(paths.normalize_relative_path("docs\\notes\\a.txt"), "docs/notes/a.txt")

    def test_drive_prefix_is_dropped(self):
        self.assertEqual(paths.normalize_relative_path("C:\\Windows\\win.ini"), "Windows/win.ini")

    def test_dot_segments_collapse(self):
        self.assertEqual(paths.normalize_relative_path("./a/./b/"), "a/b")

    def test_root_is_empty_string(self):
        for value in ("", "/", ".", "/./", "///"):
            with self.subTest(value=value):
                self.assertEqual(paths.normalize_relative_path(value), "")


class ContainsParentTraversalTests(unittest.TestCase):
    def test_detects_parent_segments(self):
        for value in ("..", "../etc", "a/../../b", "a/..", "..\\windows", "/a/b/../c"):
            with self.subTest(value=value):
                self.assertTrue(paths.contains_parent_traversal(value))

    def test_detects_double_encoded_segments(self):
        self.assertTrue(paths.contains_parent_traversal("%2e%2e/secret"))
        self.assertTrue(paths.contains_parent_traversal("a/%2E%2E%2Fb"))

    def test_dots_inside_names_are_fine(self):
        for value in ("", "a..b", "..hidden", "file..", "a/.../b", "notes.txt"):
            with self.subTest(value=value):
                self.assertFalse(paths.contains_parent_traversal(value))

    def test_checked_relative_path_rejects_traversal(self):
        with self.assertRaises(PathTraversalAttempt):
            paths.checked_relative_path("docs/../../etc/passwd")
        self.assertEqual(paths.checked_relative_path("/docs/a.txt"), "docs/a.txt")


class ExtractRequestPathTests(unittest.TestCase):
    def test_query_path_overrides_url_path(self):
        self.assertEqual(paths.extract_request_path("a/b", "c/d"), "c/d")
        self.assertEqual(paths.extract_request_path("a/b", ""), "a/b")
        self.assertEqual(paths.extract_request_path("", None), "")


class ResolveTargetTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        root = Path(self.tmp.name).resolve()
        self.base = root / "base"
        self.outside = root / "outside"
        (self.base / "docs" / "deep" / "er").mkdir(parents=True)
        self.outside.mkdir()
        (self.base / "docs" / "a.txt").write_text("a")
        (self.base / "docs" / "deep" / "er" / "b.txt").write_text("b")
        (self.outside / "secret.txt").write_text("secret")
        (root / "base-sibling").mkdir()
        (root / "base-sibling" / "x.txt").write_text("x")

    def tearDown(self):
        self.tmp.cleanup()

    def test_root_resolves_to_base(self):
        self.assertEqual(paths.resolve_target(self.base, ""), self.base)

    def test_nested_entries_resolve_inside_base(self):
        resolved = paths.resolve_target(self.base, "docs/deep/er/b.txt")
        self.assertEqual(resolved, self.base / "docs" / "deep" / "er" / "b.txt")
        self.assertTrue(paths.is_within_base(resolved, self.base))

    def test_missing_entry_is_not_found(self):
        with self.assertRaises(EntryNotFound):
            paths.resolve_target(self.base, "docs/missing.txt")

    def test_symlink_escaping_base_is_not_found(self):
        os.symlink(self.outside, self.base / "escape")
        os.symlink(self.outside / "secret.txt", self.base / "secret-link.txt")
        with self.assertRaises(EntryNotFound):
            paths.resolve_target(self.base, "escape/secret.txt")
        with self.assertRaises(EntryNotFound):
            paths.resolve_target(self.base, "secret-link.txt")

    def test_symlink_inside_base_is_followed(self):
        os.symlink(self.base / "docs" / "a.txt", self.base / "alias.txt")
        self.assertEqual(paths.resolve_target(self.base, "alias.txt"), self.base / "docs" / "a.txt")

    def test_sibling_with_common_prefix_is_outside(self):
        sibling = self.base.parent / "base-sibling"
        self.assertFalse(paths.is_within_base(sibling / "x.txt", self.base))

    def test_symlink_loop_is_not_found(self):
        os.symlink(self.base / "loop-b", self.base / "loop-a")
        os.symlink(self.base / "loop-a", self.base / "loop-b")
        with self.assertRaises(EntryNotFound):
            paths.resolve_target(self.base, "loop-a")

    def test_every_accepted_target_stays_inside_base(self):
        os.symlink(self.outside, self.base / "docs" / "out")
        candidates = [
            "docs",
            "docs/a.txt",
            "docs/deep/er/b.txt",
            "docs/out",
            "docs/out/secret.txt",
            "etc/passwd",
            "docs/deep/er",
        ]
        for candidate in candidates:
            with self.subTest(candidate=candidate):
                try:
                    resolved = paths.resolve_target(self.base, paths.normalize_relative_path(candidate))
                except EntryNotFound:
                    continue
                self.assertTrue(paths.is_within_base(resolved, self.base))


class BuildHrefTests(unittest.TestCase):
    def test_segments_are_percent_encoded(self):
        self.assertEqual(paths.build_href_for_path(""), "/")
        self.assertEqual(paths.build_href_for_path("a b/c#d.txt"), "/a%20b/c%23d.txt")
        self.assertEqual(paths.build_href_for_path("caf\u00e9"), "/caf%C3%A9")
        self.assertEqual(paths.build_href_for_path("x/y?z"), "/x/y%3Fz")


if __name__ == "__main__":
    unittest.main()
