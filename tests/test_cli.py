import unittest

from leadscout.cli import build_arg_parser, options_from_args


class CliTests(unittest.TestCase):
    def test_run_arguments_map_to_options(self):
        args = build_arg_parser().parse_args(
            [
                "run",
                "--url", "https://dir.test",
                "--directory",
                "--max-businesses", "10",
                "--max-pages", "5",
                "--max-prioritized-pages", "3",
                "--share", "a@x.test, b@x.test",
                "--exclude-path", "blog/.*",
                "--dry-run",
            ]
        )
        options = options_from_args(args)
        self.assertEqual(options.url, "https://dir.test")
        self.assertTrue(options.directory)
        self.assertEqual(options.max_businesses, 10)
        self.assertEqual(options.max_pages, 5)
        self.assertEqual(options.max_prioritized_pages, 3)
        self.assertEqual(options.share_with, ["a@x.test", "b@x.test"])
        self.assertEqual(options.exclude_paths, ["blog/.*"])
        self.assertTrue(options.dry_run)

    def test_dry_run_defaults_to_settings(self):
        options = options_from_args(build_arg_parser().parse_args(["run", "--url", "acme.test"]))
        self.assertIsNone(options.dry_run)
        self.assertEqual(options.urls, [])


if __name__ == "__main__":
    unittest.main()
