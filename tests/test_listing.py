import os
import tempfile
import unittest
from pathlib import Path

from accio.listing import (
    DirectoryEntry,
    escape_for_html,
    format_file_size,
    list_directory,
    render_listing,
    sort_entries,
)
from accio.policy import AccessPolicy


class FormatFileSizeTests(unittest.TestCase):
    def test_known_values(self):
        cases = {
            0: "0 B",
            1023: "1023 B",
            1024: "1.00 KB",
            1536: "1.50 KB",
            10 * 1024: "10.0 KB",
            100 * 1024: "100 KB",
            1048576: "1.00 MB",
            5 * 1024 ** 3: "5.00 GB",
            2 * 1024 ** 4: "2.00 TB",
        }
        for size, expected in cases.items():
            with self.subTest(size=size):
                self.assertEqual(format_file_size(size), expected)


class SortEntriesTests(unittest.TestCase):
    def test_directories_first_then_case_insensitive_names(self):
        entries = [
            DirectoryEntry("beta.txt", False, 1),
            DirectoryEntry("Zeta", True),
            DirectoryEntry("Alpha.txt", False, 1),
            DirectoryEntry("alpha", True),
        ]
        ordered = [entry.name for entry in sort_entries(entries)]
        self.assertEqual(ordered, ["alpha", "Zeta", "Alpha.txt", "beta.txt"])


class EscapeTests(unittest.TestCase):
    def test_markup_characters_are_escaped(self):
        escaped = escape_for_html("<b>&\"'")
        self.assertNotIn("<", escaped)
        self.assertNotIn('"', escaped)
        self.assertIn("&lt;b&gt;&amp;", escaped)


class RenderListingTests(unittest.TestCase):
    def test_root_listing_has_no_parent_link(self):
        html = render_listing("", [DirectoryEntry("docs", True), DirectoryEntry("a b.txt", False, 2048)])
        self.assertTrue(html.startswith("<ul>\n"))
        self.assertTrue(html.endswith("</ul>\n"))
        self.assertNotIn("../", html)
        self.assertIn('<a href="/docs">', html)
        self.assertIn('<a href="/a%20b.txt">a b.txt</a> <span class="size">2.00 KB</span>', html)

    def test_nested_listing_links_to_parent(self):
        html = render_listing("docs/guides", [DirectoryEntry("intro.md", False, 10)])
        self.assertIn('<li><a href="/docs">', html)
        self.assertIn('href="/docs/guides/intro.md"', html)

    def test_hostile_names_are_escaped_and_encoded(self):
        name = '<img src=x onerror="a">.txt'
        html = render_listing("", [DirectoryEntry(name, False, 1)])
        self.assertNotIn("<img", html)
        self.assertIn("&lt;img src=x onerror=", html)
        self.assertIn('href="/%3Cimg%20src%3Dx%20onerror%3D%22a%22%3E.txt"', html)


class ListDirectoryTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        root = Path(self.tmp.name).resolve()
        self.base = root / "share"
        self.outside = root / "outside"
        (self.base / "sub").mkdir(parents=True)
        self.outside.mkdir()
        (self.base / "b.txt").write_bytes(b"12345")
        (self.base / "A.log").write_bytes(b"x")
        (self.outside / "secret.txt").write_text("secret")
        os.symlink(self.outside, self.base / "escape")
        os.symlink(self.outside / "secret.txt", self.base / "secret.txt")
        os.symlink(self.base / "missing", self.base / "dangling")

    def tearDown(self):
        self.tmp.cleanup()

    def test_escaping_and_dangling_links_are_skipped(self):
        entries = list_directory(self.base, self.base, AccessPolicy())
        self.assertEqual(
            entries,
            [
                DirectoryEntry("sub", True, 0),
                DirectoryEntry("A.log", False, 1),
                DirectoryEntry("b.txt", False, 5),
            ],
        )

    def test_policy_hides_entries(self):
        policy = AccessPolicy.from_config(self.base, denied_extensions=["log"])
        names = [entry.name for entry in list_directory(self.base, self.base, policy)]
        self.assertEqual(names, ["sub", "b.txt"])


if __name__ == "__main__":
    unittest.main()
