[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "draftkit"
version = "0.1.0"
description = "Scaffolding helpers for Kubernetes deployment files and GitHub workflows: template rendering, variable prompts, repository readers and Azure OIDC setup."
requires-python = ">=3.10"
keywords = ["kubernetes", "scaffolding", "templates", "github-actions", "helm", "kustomize", "azure"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Code Generators",
]
dependencies = [
    "pyyaml",
    "packaging",
    "backoff",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["draftkit"]

[tool.pytest.ini_options]
addopts = "-ra"
