[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "topicrelay"
version = "0.1.0"
description = "A small publish/subscribe relay: UDP publishers, TCP subscribers, wildcard topics."
requires-python = ">=3.10"
dependencies = []
keywords = ["pubsub", "udp", "tcp", "topics", "wildcard", "relay"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
topicrelay-server = "topicrelay.server:main"
topicrelay-subscriber = "topicrelay.subscriber:main"

[tool.hatch.build.targets.wheel]
packages = ["topicrelay"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
