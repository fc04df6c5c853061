"""命令行入口：python -m ollama_proxy。"""

import argparse
import sys
from typing import List, Optional

from dotenv import load_dotenv


def main(argv: Optional[List[str]] = None) -> int:
    # 先加载 .env，再导入会读取配置的模块
    load_dotenv()

    import uvicorn

    from ollama_proxy.api.app import build_context, create_app
    from ollama_proxy.config.settings import settings
    from ollama_proxy.domain.exceptions import BusinessError
    from ollama_proxy.infrastructure.logging.logger import logger
    from ollama_proxy.providers import create_providers

    parser = argparse.ArgumentParser(prog="ollama-proxy", description="Ollama-compatible proxy for hosted LLM APIs")
    parser.add_argument("--host", default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    parser.add_argument("--models-file", default=settings.models_file)
    args = parser.parse_args(argv)

    providers = create_providers(settings)
    if not providers:
        logger.error("No API keys found. Set OPENAI_API_KEY, GEMINI_API_KEY, or OPENROUTER_API_KEY")
        return 1

    cfg = settings.model_copy(update={"models_file": args.models_file})
    try:
        context = build_context(cfg, providers=providers)
    except BusinessError as exc:
        logger.error(f"Error loading models: {exc.message}")
        return 1

    models = [config.name for config in context.registry.all_models()]
    logger.info(
        f"Ollama Proxy running on http://{args.host}:{args.port}",
        extra={"extra": {"providers": context.dispatcher.available(), "models": models}},
    )
    uvicorn.run(create_app(context), host=args.host, port=args.port, log_level=settings.log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
