[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "transcodeworker"
version = "0.1.0"
description = "Video transcoding worker that consumes jobs from a Redis/Valkey stream, runs ffmpeg and moves files through S3-compatible storage"
requires-python = ">=3.10"
keywords = ["ffmpeg", "transcoding", "video", "redis", "valkey", "streams", "s3", "minio", "worker"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Video :: Conversion",
]
dependencies = [
    "redis",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
transcodeworker = "transcodeworker.worker:main"

[tool.hatch.build.targets.wheel]
packages = ["transcodeworker"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
