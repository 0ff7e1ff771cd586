"""
Bizbot Configuration Settings

This module contains all configuration settings for the Bizbot application.
Settings can be overridden by environment variables (a local .env file is
loaded first).
"""

import os

from dotenv import load_dotenv

load_dotenv()

# Runtime
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

# LLM Configuration (DeepSeek speaks the OpenAI chat-completions protocol)
DEEPSEEK_API_KEY = os.getenv("DEEPSEEK_API_KEY")
DEEPSEEK_BASE_URL = os.getenv("DEEPSEEK_BASE_URL", "https://api.deepseek.com/v1")
LLM_MODEL = os.getenv("LLM_MODEL", "deepseek-chat")

# Supabase Configuration
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY")

# Workflow engine (n8n public API)
N8N_BASE_URL = os.getenv("N8N_BASE_URL")
N8N_API_KEY = os.getenv("N8N_API_KEY")

# WhatsApp Cloud API
WHATSAPP_API_KEY = os.getenv("WHATSAPP_API_KEY")
WHATSAPP_PHONE_NUMBER_ID = os.getenv("WHATSAPP_PHONE_NUMBER_ID")
WHATSAPP_API_VERSION = os.getenv("WHATSAPP_API_VERSION", "v17.0")
WHATSAPP_WEBHOOK_VERIFY_TOKEN = os.getenv("WHATSAPP_WEBHOOK_VERIFY_TOKEN")

# Wompi payments
WOMPI_SECRET = os.getenv("WOMPI_SECRET")

# Model temperatures
GENERATOR_TEMPERATURE = 0.7
CLASSIFIER_TEMPERATURE = 0.3
REPLY_TEMPERATURE = 0.8
GENERATOR_MAX_TOKENS = 2000
CLASSIFIER_MAX_TOKENS = 200
REPLY_MAX_TOKENS = 1000

# Business Rules
INTENTS = [
    "schedule",
    "inquiry",
    "sale",
    "cancel",
    "information",
    "greeting",
    "farewell",
    "complaint",
    "general",
]
HISTORY_WINDOW = 10
REQUIRED_CONFIG_KEYS = [
    "system_prompt",
    "automation_types",
    "available_actions",
    "response_templates",
    "business_info",
    "integrations",
]
MAX_JSON_DEPTH = 32
