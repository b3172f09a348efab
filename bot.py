"""
Telegram Where On Earth Bot - Main bot implementation
"""
import logging
import threading
from typing import Optional

import yaml
from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters
)
from telegram.helpers import escape_markdown

from challenge_store import DEFAULT_TABLE_NAME, ChallengeStore, DailyChallengeTeam
from location_providers import build_providers
from trigger import TriggerDispatcher, create_trigger_app
from workflow import DEFAULT_LOOKUP_TIMEOUT, ChoiceCard, OutboundMessage, WorkflowEngine

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=logging.INFO
)
logger = logging.getLogger(__name__)

PROACTIVE_PROMPT = "⏰ Time for the daily challenge!"


class WhereOnEarthBot:
    """Main bot class for the Where On Earth daily challenge."""

    def __init__(self, config_file: str = "config.yml"):
        """Initialize the bot with configuration."""
        self.config = self.load_config(config_file)
        storage_config = self.config.get('storage') or {}
        self.store = ChallengeStore(
            storage_config.get('connection_string'),
            storage_config.get('table_name', DEFAULT_TABLE_NAME)
        )
        providers_config = self.config.get('providers') or {}
        self.engine = WorkflowEngine(
            self.store,
            build_providers(self.config),
            lookup_timeout=providers_config.get('lookup_timeout', DEFAULT_LOOKUP_TIMEOUT)
        )
        self.admin_id = self.config.get('admin')

    @staticmethod
    def load_config(config_file: str) -> dict:
        """Load configuration from YAML file."""
        try:
            with open(config_file, 'r') as f:
                return yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.error(f"Config file {config_file} not found!")
            raise

    def is_admin(self, user_id: int) -> bool:
        """Check if user is an admin."""
        return self.admin_id is not None and user_id == self.admin_id

    @staticmethod
    def delivery_from_update(update: Update, context: ContextTypes.DEFAULT_TYPE) -> DailyChallengeTeam:
        """Build the delivery coordinates of the chat an update came from."""
        chat = update.effective_chat
        return DailyChallengeTeam(
            service_url=context.bot.base_url,
            team_id=str(chat.id),
            team_name=chat.title or chat.full_name,
            tenant_id=chat.type,
            channel_id='telegram',
            bot_id=str(context.bot.id),
            installer_name='Automatic'
        )

    @staticmethod
    def format_card(card: ChoiceCard) -> str:
        """Render a card as a Markdown caption."""
        lines = [f"*{escape_markdown(card.title)}*"]
        if card.subtitle:
            lines.append(f"_{escape_markdown(card.subtitle)}_")
        if card.text:
            lines.append("")
            lines.append(escape_markdown(card.text))
        return "\n".join(lines)

    @staticmethod
    def build_keyboard(card: ChoiceCard) -> Optional[InlineKeyboardMarkup]:
        """One button per row; the callback data is the literal command."""
        if not card.buttons:
            return None
        return InlineKeyboardMarkup([
            [InlineKeyboardButton(button.label, callback_data=button.value)]
            for button in card.buttons
        ])

    async def send_outbound(self, bot: Bot, chat_id, outbound: OutboundMessage):
        """Send a workflow result to a chat.

        Args:
            bot: Telegram bot used to send
            chat_id: Chat ID to send to
            outbound: Message produced by the workflow engine
        """
        if outbound.text:
            await bot.send_message(chat_id=chat_id, text=outbound.text)

        card = outbound.card
        if card is None:
            return

        caption = self.format_card(card)
        reply_markup = self.build_keyboard(card)
        if card.image_url:
            await bot.send_photo(
                chat_id=chat_id,
                photo=card.image_url,
                caption=caption,
                parse_mode='Markdown',
                reply_markup=reply_markup
            )
        else:
            await bot.send_message(
                chat_id=chat_id,
                text=caption,
                parse_mode='Markdown',
                reply_markup=reply_markup
            )

    async def start_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle the /start and /dailychallenge commands."""
        delivery = self.delivery_from_update(update, context)
        outbound = await self.engine.advance(delivery.team_id, None, delivery=delivery)
        await self.send_outbound(context.bot, update.effective_chat.id, outbound)

    async def help_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle the /help command."""
        help_text = (
            "🌍 *Where On Earth?* 🌍\n\n"
            "Every day a photo is picked and everyone guesses where it was taken. "
            "The closest guess wins!\n\n"
            "📸 *Picking today's image:*\n"
            "• `/dailychallenge` - Show today's challenge\n"
            "• Use the buttons to choose the image, try another one, "
            "or switch between Bing and Google images\n\n"
            "🎯 *Guessing:*\n"
            "Once the image is chosen, reply with where you think it was taken."
        )
        if self.is_admin(update.effective_user.id):
            help_text += "\n\n🔧 *Admin:*\n• `/trigger` - Send the daily challenge to every team"
        await update.message.reply_text(help_text, parse_mode='Markdown')

    async def text_message_handler(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Route plain text messages to the workflow as commands."""
        if not update.message or not update.message.text:
            return

        # Ignore if this is a command (starts with /)
        if update.message.text.startswith('/'):
            return

        chat_id = update.effective_chat.id
        outbound = await self.engine.advance(str(chat_id), update.message.text.strip())
        await self.send_outbound(context.bot, chat_id, outbound)

    async def challenge_callback_handler(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle the buttons on challenge cards."""
        query = update.callback_query
        await query.answer()

        chat_id = update.effective_chat.id
        outbound = await self.engine.advance(str(chat_id), query.data)
        await self.send_outbound(context.bot, chat_id, outbound)

    async def dispatch_all(self, bot: Bot) -> int:
        """Send every registered team its daily challenge update."""
        async def send(team: DailyChallengeTeam, outbound: OutboundMessage):
            await self.send_outbound(bot, team.team_id, outbound)

        dispatcher = TriggerDispatcher(self.engine, self.store, send, options={'prompt': PROACTIVE_PROMPT})
        return await dispatcher.run_all()

    async def trigger_all(self) -> int:
        """Run a dispatcher pass with a standalone bot, outside of the polling loop."""
        async with Bot(self.config['telegram']['bot_token']) as bot:
            return await self.dispatch_all(bot)

    async def trigger_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle the /trigger command (admin only)."""
        user = update.effective_user
        if not self.is_admin(user.id):
            await update.message.reply_text("Only admins can trigger the daily challenge!")
            return

        notified = await self.dispatch_all(context.bot)
        await update.message.reply_text(
            f"✅ *Daily Challenge Triggered*\n\nTeams notified: {notified}",
            parse_mode='Markdown'
        )

    async def error_handler(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle errors."""
        logger.error(f"Update {update} caused error {context.error}")

    def start_trigger_server(self) -> Optional[threading.Thread]:
        """Serve the trigger endpoint in a background thread."""
        trigger_config = self.config.get('trigger') or {}
        if not trigger_config.get('enabled', True):
            return None

        app = create_trigger_app(self.trigger_all)
        thread = threading.Thread(
            target=app.run,
            kwargs={
                'host': trigger_config.get('host', '0.0.0.0'),
                'port': trigger_config.get('port', 3978)
            },
            daemon=True
        )
        thread.start()
        logger.info(f"Trigger endpoint listening on port {trigger_config.get('port', 3978)}")
        return thread

    def run(self):
        """Run the bot."""
        # Create application
        application = Application.builder().token(
            self.config['telegram']['bot_token']
        ).build()

        # Add command handlers
        application.add_handler(CommandHandler("start", self.start_command))
        application.add_handler(CommandHandler("dailychallenge", self.start_command))
        application.add_handler(CommandHandler("help", self.help_command))
        application.add_handler(CommandHandler("trigger", self.trigger_command))

        # Add callback query handler for card buttons
        application.add_handler(CallbackQueryHandler(self.challenge_callback_handler))

        # Add handler for text messages (must be last)
        application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self.text_message_handler))

        # Add error handler
        application.add_error_handler(self.error_handler)

        self.start_trigger_server()

        # Start the bot
        logger.info("Starting Where On Earth Bot...")
        application.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    bot = WhereOnEarthBot()
    bot.run()
