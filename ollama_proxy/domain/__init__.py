"""领域层模型与异常。

包含：
- models: 统一的 ChatRequest / ChatResult / EmbeddingResult 等模型。
- exceptions: 带 ErrorKind 标签的业务异常类型。
"""
