[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "okvm_udp"
version = "0.1.4"
description = "Encrypted UDP transport with Reed-Solomon forward error correction for low-latency audio and video."
requires-python = ">=3.11"
dependencies = []
keywords = ["udp", "fec", "reed-solomon", "aead", "low-latency", "streaming", "asyncio"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Framework :: AsyncIO",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[tool.hatch.build.targets.wheel]
packages = ["okvm_udp"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
