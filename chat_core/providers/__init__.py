"""Provider 集成层。

该包下的模块负责：
- 定义 Transport 抽象接口 (base) 及其 httpx 实现 (http_transport)。
- 维护 Provider 端点与常量 (registry)。
- SSE 流解码 (stream_decoder)。
- 各服务的具体实现 (openrouter_client、pollinations_client)。
"""
