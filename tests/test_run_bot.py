"""
Unit tests for the startup checks.
"""
import os
import unittest

import yaml

from run_bot import PLACEHOLDER_TOKEN, setup_problems


class TestSetupProblems(unittest.TestCase):
    """Test cases for setup_problems."""

    def setUp(self):
        """Set up test fixtures."""
        self.test_config_file = "test_run_config.yml"
        self.test_example_file = "test_run_config.example.yml"

    def tearDown(self):
        """Clean up test files."""
        for path in (self.test_config_file, self.test_example_file):
            if os.path.exists(path):
                os.remove(path)

    def write_config(self, path, config):
        with open(path, 'w') as f:
            yaml.dump(config, f)

    def test_missing_config_is_created_from_example(self):
        """Test that a missing config is copied from the example and reported."""
        self.write_config(self.test_example_file, {'telegram': {'bot_token': PLACEHOLDER_TOKEN}})

        problems = setup_problems(self.test_config_file, self.test_example_file)

        self.assertEqual(len(problems), 1)
        self.assertIn("Created", problems[0])
        self.assertTrue(os.path.exists(self.test_config_file))

    def test_missing_config_and_example(self):
        """Test that nothing is created without an example config."""
        problems = setup_problems(self.test_config_file, self.test_example_file)

        self.assertEqual(len(problems), 1)
        self.assertFalse(os.path.exists(self.test_config_file))

    def test_placeholder_token(self):
        """Test that the example token is not accepted."""
        self.write_config(self.test_config_file, {
            'telegram': {'bot_token': PLACEHOLDER_TOKEN},
            'storage': {'connection_string': 'state.json'}
        })

        problems = setup_problems(self.test_config_file)

        self.assertEqual(len(problems), 1)
        self.assertIn("bot_token", problems[0])

    def test_ready_without_storage(self):
        """Test that missing storage only warns."""
        self.write_config(self.test_config_file, {'telegram': {'bot_token': '123:abc'}})

        self.assertEqual(setup_problems(self.test_config_file), [])


if __name__ == '__main__':
    unittest.main()
