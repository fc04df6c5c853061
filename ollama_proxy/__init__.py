"""Ollama Proxy 顶层包。

对外暴露 Ollama 兼容的 HTTP/NDJSON 接口，并把请求转发给
OpenAI、Google Gemini、OpenRouter 等上游服务，再把结果转换回 Ollama 格式。
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
