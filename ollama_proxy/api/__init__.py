"""HTTP 接口层：请求校验、响应组装、流式输出、错误分类与路由。"""
