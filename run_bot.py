#!/usr/bin/env python3
"""
Entry point for the Where On Earth Bot.

Polls Telegram and serves the trigger endpoint, or with --trigger-once sends
every registered team its daily challenge update and exits (for cron).
"""
import argparse
import asyncio
import os
import shutil
from typing import List

import yaml

PLACEHOLDER_TOKEN = 'YOUR_BOT_TOKEN_HERE'


def setup_problems(config_file: str, example_file: str = 'config.example.yml') -> List[str]:
    """List what stops the bot from starting; an empty list means ready.

    A missing config is created from the example so it can be filled in.
    """
    if not os.path.exists(config_file):
        if not os.path.exists(example_file):
            return [f"{config_file} and {example_file} are both missing"]
        shutil.copy(example_file, config_file)
        return [f"Created {config_file} from {example_file}; add your bot token and map keys"]

    with open(config_file, 'r') as f:
        config = yaml.safe_load(f) or {}

    problems = []
    token = (config.get('telegram') or {}).get('bot_token')
    if not token or token == PLACEHOLDER_TOKEN:
        problems.append(f"telegram.bot_token is not set in {config_file} (get one from @BotFather)")
    if not (config.get('storage') or {}).get('connection_string'):
        # Not fatal: each chat is told how to fix it
        print(f"⚠️  storage.connection_string is not set in {config_file}, challenges cannot be saved")
    return problems


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the Where On Earth daily challenge bot.")
    parser.add_argument("--config", default="config.yml", help="Path to the YAML config file.")
    parser.add_argument("--trigger-once", action="store_true",
                        help="Send every registered team its daily challenge update, then exit.")
    args = parser.parse_args()

    problems = setup_problems(args.config)
    for problem in problems:
        print(f"❌ {problem}")
    if problems:
        return 1

    from bot import WhereOnEarthBot
    bot = WhereOnEarthBot(args.config)
    if args.trigger_once:
        notified = asyncio.run(bot.trigger_all())
        print(f"🌍 Daily challenge sent to {notified} team(s)")
        return 0

    print("🌍 Starting the Where On Earth Bot...")
    try:
        bot.run()
    except KeyboardInterrupt:
        print("👋 Bot stopped")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
