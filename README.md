# draftkit

A library for scaffolding Kubernetes deployment files and GitHub Actions
workflows into an application repository. It renders template directories
with `{{VARIABLE}}` placeholders, asks for values on the terminal, updates
production deployment images, and can connect a GitHub repository to Azure
through OIDC federated credentials.

## Installation

```
pip install draftkit
```

Python 3.10 or newer is required. The package depends on `pyyaml`,
`packaging` and `backoff`.

## Modules

### `draftkit.osutil`

- `exists(path)` returns whether a file or directory exists.
- `ensure_directory(directory)` creates a missing directory. It raises
  `NotADirectoryError` if a file is in the way.
- `ensure_file(file)` creates an empty file if it is missing. It raises
  `IsADirectoryError` if the path is a directory.
- `symlink_with_fallback(oldname, newname)` creates a symlink. On Windows,
  if the user lacks the symlink privilege, it moves the file instead.
- `replace_template_variables(template_root, src_path, custom_inputs)` reads
  a template file and replaces every `{{NAME}}` with its value.
- `check_all_variables_substituted(file_content)` raises
  `UnsubstitutedVariableError` if any `{{NAME}}` placeholder is left. A
  placeholder is a run of non-whitespace characters that does not start with
  a period, so helm expressions such as `{{.Values.x}}` are not counted.
- `copy_dir(template_root, src, dest, custom_inputs, template_writer)` renders
  the tree under `template_root/src` into `dest`. It skips `draft.yaml`
  files.

### `draftkit.writers`

- `TemplateWriter` is a protocol with `write_file(path, data)` and
  `ensure_directory(path)`.
- `LocalFSWriter(write_mode=0)` writes to disk. A mode of 0 means `0o644`.
- `FileMapWriter` collects the output in its `file_map` dictionary, which
  maps each path to its bytes.

### `draftkit.reporeader`

- `RepoReader` and `VariableExtractor` are protocols.
- `LocalFSReader` reads the local filesystem. `get_repo_name()` returns the
  name of the working directory.
- `FakeRepoReader(files=...)` works from an in-memory dictionary of relative
  paths and their contents. Its repository name is always `"test-repo"`.
- `find_files(path, patterns, max_depth)` matches shell-style patterns
  against file base names, searching down to `max_depth` nested
  directories. A depth of 0 means the root only. A malformed pattern raises
  `BadPatternError`.

### `draftkit.prompts`

- `DraftConfig`, `BuilderVar` and `BuilderVarDefault` describe a template's
  variables and their defaults. Each has `from_dict`, which reads the keys
  `variables`, `variableDefaults`, `name`, `description`, `type`,
  `disablePrompt`, `value` and `referenceVar`.
- `run_prompts_from_config`, `run_prompts_from_config_with_skips` and
  `run_prompts_from_config_with_skips_io(config, vars_to_skip, stdin, stdout)`
  ask for each variable and return a dictionary of answers.
  - Variables with `is_prompt_disabled` take their default. If there is no
    default, `PromptError` is raised.
  - An empty answer falls back to the variable's default.
  - `bool` variables are asked as a `true`/`false` choice.
- `get_variable_default_value(variable_name, variable_defaults, inputs)`
  returns a variable's default. A `reference_var` that has already been
  answered takes precedence over the literal value.
- `run_select_prompt`, `run_bool_prompt`, `run_defaultable_string_prompt`
  and `get_input_from_prompt` are the individual prompts.
  `allow_all_string_validator` and `no_blank_string_validator` are their
  validators.
- If input ends before an answer is given, `PromptAborted` is raised.

### `draftkit.workflows`

- `create_workflows(dest, deploy_type, flag_variables, template_writer,
  flag_values_map, template_root)` renders the workflow templates for
  `helm`, `kustomize` or `manifests` into `dest`.
  - Templates are read from `template_root/workflows/<deploy type>/`.
  - `flag_variables` are `NAME=value` strings.
  - Values missing from `flag_values_map` are prompted for.
  - An empty `deploy_type` is chosen interactively.
- `update_production_deployments` sets the production image to
  `<AZURECONTAINERREGISTRY>.azurecr.io/<CONTAINERNAME>`. It does this in
  `charts/production.yaml`, `overlays/production/deployment.yaml` or
  `manifests/deployment.yaml`, depending on the deploy type.
- `set_deployment_container_image` and `set_helm_container_image` do the
  individual edits. A Deployment must have exactly one container.
- `Workflows` lists the available templates and loads their `draft.yaml`
  configs.
- `WorkflowConfig.set_flag_values_to_map()` maps command-line values to
  template variable names.
- `GitHubWorkflow` is a loose model of a workflow file, with `from_dict` and
  `to_dict`.
- `HelmProductionYaml` and `ServiceYaml` load, edit and write service
  settings.
- Errors are raised as `WorkflowError`.

### `draftkit.providers`

This module runs the `az` and `gh` command-line tools, which must be
installed.

- `initiate_azure_oidc_flow(sc, spinner)` sets up the connection. Using the
  settings of a `SetUpCmd`, it:
  - validates the subscription, resource group and repository;
  - creates an Azure AD app and its service principal;
  - assigns the contributor role on the resource group;
  - adds federated credentials for pull requests and the `main` and `master`
    branches;
  - stores `AZURE_CLIENT_ID`, `AZURE_SUBSCRIPTION_ID` and `AZURE_TENANT_ID`
    as repository secrets.
- `check_az_cli_installed()` requires Azure CLI 2.37 or newer and offers to
  upgrade an older one.
- Other helpers:
  - `get_az_cli_version`
  - `is_logged_in_to_az` and `is_logged_in_to_gh`
  - `has_gh_cli`
  - `log_in_to_az` and `log_in_to_gh`
  - `is_subscription_id_valid`
  - `az_app_exists`, `az_acr_exists` and `az_aks_exists`
  - `get_current_az_subscription_id`
- Failures raise `ProviderError`. Command failures raise its subclass
  `CommandError`.

### `draftkit.logger` and `draftkit.spinner`

- `DraftFormatter` is a `logging.Formatter`. It prints errors as
  `Error: message` and other records as `[Draft] message`, with colour on a
  terminal.
- `OutputSplitter` is a stream that sends text containing `Error`, `Fatal`
  or `Panic` to stderr and all other text to stdout.
- `create_spinner(msg)` returns a `Spinner`. It has `start()` and `stop()`
  and can be used as a context manager. It only animates when writing to a
  terminal.

## Example

```python
from draftkit.osutil import copy_dir
from draftkit.writers import FileMapWriter

writer = FileMapWriter()
copy_dir("my-templates", "dockerfiles/javascript", "/out",
         {"PORT": "8080", "VERSION": "14"}, writer)
print(sorted(writer.file_map))
```

## What it does not do

- There is no command-line program. Everything is used from Python.
- No templates are shipped with the package. Functions that render
  templates need a `template_root` directory that you supply.
- Language detection is not included.
- Deployment manifest generation beyond the production image update is not
  included.

## Running the tests

```
pip install -e ".[test]"
pytest
```