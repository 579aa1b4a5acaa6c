[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sirenproxy"
version = "0.1.0"
description = "WebSocket tunnel server that detects VLESS, Trojan, Shadowsocks and VMess traffic and relays it to TCP targets."
requires-python = ">=3.10"
keywords = ["proxy", "websocket", "tunnel", "vless", "vmess", "trojan", "shadowsocks", "doh"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Framework :: AsyncIO",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
]
dependencies = [
    "aiohttp>=3.9",
    "cryptography>=41",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.23",
]

[project.scripts]
sirenproxy = "sirenproxy.app:main"

[tool.hatch.build.targets.wheel]
packages = ["sirenproxy"]

[tool.hatch.build.targets.sdist]
include = ["sirenproxy", "tests", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]
