import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Supabase settings (optional, JSON storage is used when missing)
SUPABASE_URL = os.getenv('SUPABASE_URL')
SUPABASE_KEY = os.getenv('SUPABASE_KEY')

# OpenAI-compatible API settings
OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
OPENAI_BASE_URL = os.getenv('OPENAI_BASE_URL')  # e.g. https://dashscope.aliyuncs.com/compatible-mode/v1
CHAT_MODEL = os.getenv('CHAT_MODEL', "gpt-4o")
VISION_MODEL = os.getenv('VISION_MODEL', "gpt-4o")
MAX_TOKENS = 2000
VISION_MAX_TOKENS = 1000
CHAT_TEMPERATURE = 0.7
VISION_TEMPERATURE = 0.3
REQUEST_TIMEOUT = 60  # seconds

# Review settings
HISTORY_WINDOW = 10  # reviews fed back into the assistant prompt
DATA_DIR = os.getenv('CHARTREVIEW_DATA_DIR', 'data')

# Emoji for console output
EMOJI = {
    'chart': '📊',
    'up': '📈',
    'down': '📉',
    'warning': '⚠️',
    'clock': '🕒',
    'brain': '🧠',
    'robot': '🤖',
    'check': '✅',
    'cross': '❌',
    'error': '❗',
    'info': 'ℹ️',
    'target': '🎯',
    'success': '✅',
    'bulb': '💡'
}

# Logging Configuration
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_FILE = 'chart_review.log'
