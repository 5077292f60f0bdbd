"""
Narrated Tour Agent Configuration
LLM（Amazon Bedrock）関連の設定項目をここで管理します
"""
import os

AWS_REGION = os.environ.get("AWS_REGION", "us-west-2")
# 空の場合はLLMを使わず、テンプレートによるフォールバック応答のみを返す
BEDROCK_MODEL_ID = os.environ.get("BEDROCK_MODEL_ID", "").strip()

PROVIDER_TIMEOUT = int(os.environ.get("BEDROCK_TIMEOUT", "30"))  # 秒
MAX_RETRIES = 3
RETRY_DELAY = 15  # 秒

NARRATION_MAX_TOKENS = 300
NARRATION_TEMPERATURE = 0.7
INTERPRET_MAX_TOKENS = 500
INTERPRET_TEMPERATURE = 0.3
SCRIPT_MAX_TOKENS = 1000
SCRIPT_TEMPERATURE = 0.5

# プロンプトに含めるコンテキストの上限
MAX_PROMPT_LINKS = 5
MAX_CONTEXT_ELEMENTS = 40
