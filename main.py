"""
ChartReview AI - Main module
Interactive console for reviewing AI trading predictions against actual prices.
"""

import logging
import sys
import traceback
import signal
import os
from pathlib import Path
from colorama import Fore, Style, init

from config.settings import (
    SUPABASE_URL,
    SUPABASE_KEY,
    EMOJI,
    LOG_FORMAT,
    LOG_FILE
)

from chartreview.analysis.outcome_resolver import OutcomeResolver
from chartreview.analysis.review_engine import ReviewEngine, PostResult
from chartreview.database.base import ReviewRepository
from chartreview.database.json_storage import JsonStorageClient
from chartreview.database.supabase import SupabaseClient
from chartreview.errors import ReviewError, ValidationError, IncompleteDataError, CollaboratorError
from chartreview.models.review import ReviewSession
from chartreview.utils.openai_client import OpenAIChatClient, OpenAIVisionClient

# Initialize colorama for Windows support
init()

# File handler with full formatting
file_handler = logging.FileHandler(LOG_FILE, encoding='utf-8')
file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
file_handler.setLevel(logging.DEBUG)

# Console handler with minimal formatting
console_handler = logging.StreamHandler(sys.stdout)
console_handler.setFormatter(logging.Formatter('%(message)s'))
console_handler.setLevel(logging.INFO)

# Configure root logger for file logging only
logger = logging.getLogger()
logger.setLevel(logging.DEBUG)
logger.addHandler(file_handler)

# Create separate console logger for UI
console = logging.getLogger("ui")
console.addHandler(console_handler)
console.propagate = False  # Prevent duplicate logging
console.setLevel(logging.INFO)

HELP_TEXT = """Commands:
  /image <path> [message]      send a closing chart for recognition
  /outcome <high> <low> <close> type the actual prices
  /complete                    finish the review and show the final score
  /show                        show the review status
  /quit                        leave
Anything else is sent to the assistant."""


def accuracy_color(accuracy: int) -> str:
    """Return color based on accuracy"""
    if accuracy >= 80:
        return Fore.GREEN
    elif accuracy >= 60:
        return Fore.YELLOW
    return Fore.RED


class ReviewConsole:
    """Drives one review session from the terminal"""

    def __init__(self, engine: ReviewEngine):
        self.engine = engine
        self.session: ReviewSession = None

    def open(self, kind: str, source_id: str) -> ReviewSession:
        if kind == 'a':
            self.session = self.engine.create_for_analysis(source_id)
        else:
            self.session = self.engine.get_or_create_for_conversation(source_id)
        self.display_message(self.session.messages[-1].content)
        self.display_status()
        return self.session

    def display_message(self, content: str):
        console.info("\n" + Fore.CYAN + f"{EMOJI['robot']} Assistant:" + Style.RESET_ALL)
        console.info(content)

    def display_status(self):
        session = self.engine.get_session(self.session.id)
        console.info("\n" + Fore.BLUE + "═" * 50 + Style.RESET_ALL)
        console.info(Fore.MAGENTA + f"{EMOJI['chart']} Review status: {session.status.value}" + Style.RESET_ALL)
        for index, review in enumerate(session.prediction_reviews, start=1):
            p = review.prediction
            direction_emoji = EMOJI['up'] if p.direction.value == 'long' else EMOJI['down'] if p.direction.value == 'short' else EMOJI['clock']
            line = f"{direction_emoji} #{index}: {p.direction.value} S {p.support_level} / R {p.resistance_level}"
            if review.accuracy is not None:
                line += f" → {accuracy_color(review.accuracy)}{review.accuracy}%{Style.RESET_ALL}"
            else:
                line += f" → {Fore.LIGHTBLACK_EX}awaiting outcome{Style.RESET_ALL}"
            console.info(line)
        if session.is_completed:
            console.info(f"{EMOJI['target']} Overall accuracy: {accuracy_color(session.overall_accuracy)}{session.overall_accuracy}%{Style.RESET_ALL}")
            console.info(f"{EMOJI['brain']} Quality score: {accuracy_color(session.quality_score)}{session.quality_score}{Style.RESET_ALL}")
        console.info(Fore.BLUE + "═" * 50 + Style.RESET_ALL)

    def display_result(self, result: PostResult):
        if result.resolved is None:
            console.info(Fore.LIGHTBLACK_EX + "(routed to assistant)" + Style.RESET_ALL)
        self.display_message(result.reply)

    def handle(self, line: str) -> bool:
        """Handle one input line. Returns False when the user wants to leave."""
        if line in ('/quit', '/exit'):
            return False

        try:
            if line == '/help':
                console.info(HELP_TEXT)
            elif line == '/show':
                self.display_status()
            elif line == '/complete':
                self.session = self.engine.complete(self.session.id)
                console.info(f"\n{Fore.GREEN}{EMOJI['success']} Review completed!{Style.RESET_ALL}")
                self.display_status()
            elif line.startswith('/outcome'):
                parts = line.split()
                if len(parts) != 4:
                    console.info(f"{Fore.RED}Usage: /outcome <high> <low> <close>{Style.RESET_ALL}")
                    return True
                self.display_result(self.engine.submit_outcome(self.session.id, *parts[1:]))
            elif line.startswith('/image'):
                parts = line.split(maxsplit=2)
                if len(parts) < 2:
                    console.info(f"{Fore.RED}Usage: /image <path> [message]{Style.RESET_ALL}")
                    return True
                path = Path(parts[1])
                message = parts[2] if len(parts) > 2 else "Here is the chart after the close."
                image = path.read_bytes()
                console.info(f"{Fore.CYAN}{EMOJI['brain']} Reading chart...{Style.RESET_ALL}")
                self.display_result(self.engine.post_message(self.session.id, message, image=image, image_ref=str(path)))
            else:
                self.display_result(self.engine.post_message(self.session.id, line))

        except ValidationError as e:
            console.info(f"{Fore.RED}{EMOJI['cross']} Invalid prices: {str(e)}{Style.RESET_ALL}")
        except IncompleteDataError as e:
            console.info(f"{Fore.YELLOW}{EMOJI['warning']} {e.missing} prediction(s) still need actual prices{Style.RESET_ALL}")
        except CollaboratorError as e:
            console.info(f"{Fore.RED}{EMOJI['error']} Assistant unavailable, please try again: {str(e)}{Style.RESET_ALL}")
        except ReviewError as e:
            console.info(f"{Fore.RED}{EMOJI['error']} {str(e)}{Style.RESET_ALL}")
        except OSError as e:
            console.info(f"{Fore.RED}{EMOJI['error']} Cannot read file: {str(e)}{Style.RESET_ALL}")
        return True

    def run(self):
        """Main input loop"""
        console.info(Fore.LIGHTBLACK_EX + HELP_TEXT + Style.RESET_ALL)
        while True:
            try:
                line = input(f"\n{Fore.YELLOW}You:{Style.RESET_ALL} ").strip()
            except EOFError:
                break
            if not line:
                continue
            if not self.handle(line):
                break


def signal_handler(signum, frame):
    """Signal handler for graceful shutdown"""
    print("\n" + "═" * 50)
    print(f"{Fore.YELLOW}👋 Thank you for using ChartReview AI!")
    print(f"Shutting down gracefully...{Style.RESET_ALL}")
    print("═" * 50 + "\n")
    sys.exit(0)


def choose_storage() -> ReviewRepository:
    """Let user choose storage type"""
    print("\n" + "═" * 50)
    print(f"{Fore.CYAN}{EMOJI['chart']} ChartReview AI - Storage Selection{Style.RESET_ALL}")
    print("═" * 50 + "\n")

    # Show the Supabase option only when credentials are configured
    if SUPABASE_URL and SUPABASE_KEY:
        print(f"{Fore.CYAN}1. {Fore.WHITE}Supabase Cloud Database")
        print(f"   {Fore.LIGHTBLACK_EX}• Shared with the web app{Style.RESET_ALL}\n")
        print(f"{Fore.CYAN}2. {Fore.WHITE}Local JSON Storage")
        print(f"   {Fore.LIGHTBLACK_EX}• Data stored on your computer{Style.RESET_ALL}\n")

        while True:
            choice = input(f"{Fore.YELLOW}Enter your choice (1/2):{Style.RESET_ALL} ").strip()
            if choice == "1":
                try:
                    client = SupabaseClient(SUPABASE_URL, SUPABASE_KEY)
                    print(f"{Fore.GREEN}✓ Connected to Supabase successfully!{Style.RESET_ALL}\n")
                    return client
                except Exception as e:
                    print(f"\n{Fore.RED}❌ Error: {str(e)}")
                    print(f"Please try again.{Style.RESET_ALL}\n")
            elif choice == "2":
                break
            else:
                print(f"\n{Fore.RED}❌ Invalid choice. Please enter 1 or 2.{Style.RESET_ALL}\n")

    client = JsonStorageClient()
    print(f"{Fore.GREEN}✓ Local storage initialized ({client.file_path}){Style.RESET_ALL}\n")
    return client


def choose_source() -> tuple:
    """Ask which conversation or analysis to review"""
    while True:
        kind = input(f"{Fore.YELLOW}Review a (c)onversation or an (a)nalysis? {Style.RESET_ALL}").strip().lower()
        if kind in ('c', 'a'):
            break
        print(f"{Fore.RED}❌ Please enter c or a.{Style.RESET_ALL}")
    source_id = input(f"{Fore.YELLOW}ID:{Style.RESET_ALL} ").strip()
    return kind, source_id


def main():
    """Main function to run the review console"""
    os.system('cls' if os.name == 'nt' else 'clear')

    print("\n" + "═" * 50)
    print(f"{Fore.CYAN}{EMOJI['chart']} Welcome to ChartReview AI{Style.RESET_ALL}")
    print(f"{Fore.CYAN}{EMOJI['robot']} Prediction Review Assistant{Style.RESET_ALL}")
    print("═" * 50 + "\n")

    # Register signal handlers
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        storage = choose_storage()
        engine = ReviewEngine(
            repository=storage,
            resolver=OutcomeResolver(OpenAIVisionClient()),
            chat=OpenAIChatClient(repository=storage)
        )
        review_console = ReviewConsole(engine)

        kind, source_id = choose_source()
        review_console.open(kind, source_id)
        review_console.run()

    except ReviewError as e:
        print(f"\n{Fore.RED}❌ {str(e)}{Style.RESET_ALL}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error: {str(e)}")
        logger.debug(f"Traceback: {traceback.format_exc()}")

        print(f"\n{Fore.RED}❌ An error occurred. Check {LOG_FILE} for details.{Style.RESET_ALL}")
        sys.exit(1)


if __name__ == "__main__":
    main()
