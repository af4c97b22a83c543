"""全局测试配置：在任何模块导入之前设置测试用支付配置。"""

import os

os.environ["ZPAY_PID"] = "1001"
os.environ["ZPAY_KEY"] = "test-zpay-key"
os.environ["BASE_URL"] = "https://yan.example.com"
os.environ["DASHSCOPE_API_KEY"] = "test-dashscope-key"
