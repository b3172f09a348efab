"""
Unit tests for the challenge store.
"""
import json
import os
import unittest

from challenge_store import (
    ChallengeStatus,
    ChallengeStore,
    DailyChallenge,
    DailyChallengeImage,
    DailyChallengeInfo,
    DailyChallengeTeam,
    ImageSource,
)
from errors import ConfigurationMissing


class TestChallengeStore(unittest.TestCase):
    """Test cases for ChallengeStore class."""

    def setUp(self):
        """Set up test fixtures."""
        self.test_state_file = "test_challenge_store.json"
        self.store = ChallengeStore(self.test_state_file, "TestTable")

    def tearDown(self):
        """Clean up test files."""
        if os.path.exists(self.test_state_file):
            os.remove(self.test_state_file)

    def test_unseen_team_gets_zero_values(self):
        """Test that lookups for a new team return empty records."""
        challenge = self.store.get_daily_challenge("T1")
        self.assertIsNone(challenge.photo_url)
        self.assertEqual(challenge.entries, [])
        self.assertEqual(challenge.current_status, ChallengeStatus.AWAITING_IMAGE)
        self.assertFalse(challenge.result_set)

        info = self.store.get_latest_info("T1")
        self.assertEqual(info.current_source, ImageSource.BING)
        self.assertEqual(info.current_image_index, 0)

        self.assertIsNone(self.store.get_daily_challenge_image("T1").url)
        self.assertFalse(self.store.get_team_info("T1").is_registered)

    def test_save_is_upsert(self):
        """Test that saving twice replaces the stored record."""
        self.store.save_latest_info("T1", DailyChallengeInfo(ImageSource.GOOGLE, 3))
        self.store.save_latest_info("T1", DailyChallengeInfo(ImageSource.BING, 4))

        info = self.store.get_latest_info("T1")
        self.assertEqual(info.current_source, ImageSource.BING)
        self.assertEqual(info.current_image_index, 4)

    def test_records_are_kept_per_team(self):
        """Test that teams don't see each other's records."""
        self.store.save_daily_challenge_image("T1", DailyChallengeImage(
            url="https://example.com/a.jpg", image_region="en-US", image_text="Paris, France"))

        self.assertEqual(self.store.get_daily_challenge_image("T1").image_text, "Paris, France")
        self.assertIsNone(self.store.get_daily_challenge_image("T2").url)

    def test_daily_challenge_survives_reload(self):
        """Test that a saved challenge is read back by a new store instance."""
        challenge = DailyChallenge(
            photo_url="https://example.com/a.jpg",
            text="Paris, France",
            latitude=48.85,
            longitude=2.35,
            entries=[{'from': 'Alice', 'guess': 'Lyon'}],
            current_status=ChallengeStatus.GUESSING
        )
        self.store.save_daily_challenge("T1", challenge)

        reloaded = ChallengeStore(self.test_state_file, "TestTable").get_daily_challenge("T1")
        self.assertEqual(reloaded, challenge)

    def test_team_registration_is_idempotent(self):
        """Test that registering a team again doesn't duplicate or wipe it."""
        team = DailyChallengeTeam(
            service_url="https://api.telegram.org/bot123",
            team_id="T1",
            team_name="Explorers",
            tenant_id="group",
            channel_id="telegram",
            bot_id="42"
        )
        self.store.save_team_info("T1", team)
        self.store.save_team_info("T1", DailyChallengeTeam(team_id="T1", bot_id="42"))

        teams = self.store.get_all_teams()
        self.assertEqual(list(teams.keys()), ["T1"])
        self.assertEqual(teams["T1"].service_url, "https://api.telegram.org/bot123")
        self.assertEqual(teams["T1"].team_name, "Explorers")
        self.assertEqual(teams["T1"].installer_name, "Automatic")

    def test_absent_and_unknown_fields(self):
        """Test that older or newer rows are still readable."""
        with open(self.test_state_file, 'w') as f:
            json.dump({
                'TestTable': {
                    'DailyChallengeImage': {'T1': {'url': 'https://example.com/a.jpg', 'extra': 1}},
                    'DailyChallengeInfo': {'T1': {}}
                }
            }, f)

        image = self.store.get_daily_challenge_image("T1")
        self.assertEqual(image.url, 'https://example.com/a.jpg')
        self.assertEqual(image.image_source, ImageSource.BING)
        self.assertEqual(self.store.get_latest_info("T1").current_image_index, 0)

    def test_legacy_result_set_means_resolved(self):
        """Test that a row flagged result_set loads as resolved."""
        with open(self.test_state_file, 'w') as f:
            json.dump({
                'TestTable': {
                    'DailyChallenge': {'T1': {
                        'photo_url': 'https://example.com/a.jpg',
                        'current_status': 'Guessing',
                        'result_set': True
                    }}
                }
            }, f)

        challenge = self.store.get_daily_challenge("T1")
        self.assertEqual(challenge.current_status, ChallengeStatus.RESOLVED)
        self.assertTrue(challenge.result_set)

    def test_legacy_photo_without_status_is_guessing(self):
        """Test that a row with a photo but no status loads as guessing."""
        challenge = DailyChallenge.from_dict({'photo_url': 'https://example.com/a.jpg'})
        self.assertEqual(challenge.current_status, ChallengeStatus.GUESSING)

    def test_null_numbers_read_as_zero(self):
        """Test that stored nulls for coordinates and distance load as 0.0."""
        challenge = DailyChallenge.from_dict({
            'photo_url': 'https://example.com/a.jpg',
            'latitude': None,
            'longitude': None,
            'distance_to_entry': None
        })
        self.assertEqual(challenge.latitude, 0.0)
        self.assertEqual(challenge.longitude, 0.0)
        self.assertEqual(challenge.distance_to_entry, 0.0)

    def test_corrupt_file_is_not_overwritten(self):
        """Test that a write refuses to replace a table file it can't read."""
        for team_key in ("A", "B", "C"):
            self.store.save_team_info(team_key, DailyChallengeTeam(team_id=team_key, bot_id="42"))
        with open(self.test_state_file) as f:
            original = f.read()
        corrupted = original[:len(original) // 2]
        with open(self.test_state_file, 'w') as f:
            f.write(corrupted)

        # Reads degrade to empty records
        self.assertEqual(self.store.get_all_teams(), {})
        with self.assertRaises(ValueError):
            self.store.save_latest_info("A", DailyChallengeInfo(ImageSource.GOOGLE, 1))

        with open(self.test_state_file) as f:
            self.assertEqual(f.read(), corrupted)

        # Once repaired, every team is still there
        with open(self.test_state_file, 'w') as f:
            f.write(original)
        self.assertEqual(sorted(self.store.get_all_teams()), ["A", "B", "C"])

    def test_missing_connection_string(self):
        """Test that an unconfigured store refuses to read or write."""
        store = ChallengeStore("")
        self.assertFalse(store.is_configured)
        with self.assertRaises(ConfigurationMissing):
            store.get_daily_challenge("T1")
        with self.assertRaises(ConfigurationMissing):
            store.save_latest_info("T1", DailyChallengeInfo())
        with self.assertRaises(ConfigurationMissing):
            store.get_all_teams()


if __name__ == '__main__':
    unittest.main()
