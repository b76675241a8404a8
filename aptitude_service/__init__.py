# BAT-7能力倾向计分与报告服务
__version__ = "1.0.0"
