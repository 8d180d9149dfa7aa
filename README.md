# guardian

A library of helpers for Terraform-based workflows.

## What it provides

- **`guardian.args`**: the option dataclasses `ApplyOptions`, `PlanOptions`,
  `InitOptions`, `FormatOptions`, `ShowOptions` and `ValidateOptions`. The
  functions `apply_args`, `plan_args`, `init_args`, `format_args`, `show_args`
  and `validate_args` turn them into Terraform command-line flags. Passing
  `None` gives an empty list.
- **`guardian.hcl`**: a small reader for HCL configuration. `parse` returns a
  `Body` with `blocks_of_type` and `attribute`. Attribute values are read only
  when they are literals: strings without interpolation, heredocs, numbers,
  booleans or `null`. On bad input it raises `HclParseError`.
- **`guardian.terraform`**:
  - `get_entrypoint_directories` finds the directories whose `.tf` files
    declare a `backend` block. The results are sorted by path, and an optional
    `max_depth` limits how deep the search goes.
  - `has_backend_config` tells whether a `.tf` file declares a backend block.
  - `extract_backend_config` and `parse_backend_config` read the backend's
    `bucket` and `prefix` into a `TerraformBackendConfig`.
  - `extract_modules`, `parse_modules` and `find_modules` collect module
    `source` paths.
  - `module_usage` builds a `ModuleUsageGraph` that maps each entrypoint to
    every module it uses, at any depth, and each module back to its
    entrypoints.
  - `format_output_for_github_diff` rewrites plan output so that GitHub's
    `diff` highlighting shows it correctly.
  - `INIT_REQUIRED_COMMANDS` lists the subcommands that need `terraform init`
    to have run first.
  - Failures raise `TerraformError`.
- **`guardian.util`**: `child_path`, `path_eval_abs` and `sorted_map_keys`.
- **`guardian.retry`**: `with_retries` calls a function again while it raises
  `RetryableError`. It waits between attempts with a capped Fibonacci backoff
  (`fibonacci_delays`), configured by `RetryConfig`.
- **`guardian.storage`**:
  - `GoogleCloudStorage` implements the `Storage` interface over the Cloud
    Storage JSON API.
  - `upload_object` gzips the data before uploading it, and by default refuses
    to overwrite an existing object.
  - The client also offers `download_object`, `object_metadata`,
    `delete_object` and `objects_with_name`.
  - Transient failures are retried with exponential backoff until a timeout,
    as set in `StorageConfig`.
  - `make_upload_config` and `split_object_uri` are helpers.
- **`guardian.iam`**:
  - `IAMClient` reads the IAM policies of projects, folders and organizations
    through Cloud Resource Manager. It also removes single memberships from
    them, retrying conflicts and server errors.
  - `remove_from_policy`, `policy_to_asset_iam`, `policy_from_dict` and
    `policy_to_dict` work on `Policy` values without any network access.
- **`guardian.parser`**: `TerraformParser` lists the `default.tfstate` files in
  storage buckets. It reads `google_*_iam_binding` and `google_*_iam_member`
  resources out of them as `AssetIAM` entries. A `HierarchyNode` map passed to
  `set_assets` resolves folder and project IDs.
- **`guardian.github`**: `GitHubClient` lists repositories, issues, issue
  comments and the pull requests for a commit. It also creates and closes
  issues, creates, updates and deletes comments, and reads a user's permission
  level. It retries every status except 400, 401, 403, 404 and 422.

## What it does not do

- It does not run the `terraform` binary. The `args` functions only build the
  argument lists.
- It has no command-line program.
- The clients do not look up credentials. Pass an access token, or a
  configured `requests.Session`, to `GitHubClient`, `IAMClient` or
  `GoogleCloudStorage`. `TerraformParser()` with no storage argument creates a
  `GoogleCloudStorage` without a token.
- The HCL reader does not evaluate expressions. A module `source` or backend
  setting written as anything other than a literal is not resolved.

## Installation

```
pip install .
```

## Examples

Build the flags for a Terraform plan:

```python
from guardian.args import PlanOptions, plan_args

plan_args(PlanOptions(no_color=True, input=False, out="plan.out"))
# ['-no-color', '-input=false', '-out=plan.out']
```

Find entrypoints and the modules they use:

```python
from guardian.terraform import get_entrypoint_directories, module_usage

for entrypoint in get_entrypoint_directories("infra", max_depth=None):
    print(entrypoint.path, entrypoint.backend_file)

graph = module_usage("infra", None, True)
```

Remove an IAM member from a policy without making any API call:

```python
from guardian.iam import AssetIAM, ResourceType, policy_from_dict, remove_from_policy

policy = policy_from_dict({"bindings": [{"role": "roles/editor", "members": ["user:a@example.com"]}]})
member = AssetIAM(
    role="roles/editor",
    member="user:a@example.com",
    resource_id="123",
    resource_type=ResourceType.PROJECT,
)
remove_from_policy(policy, member)
```

## Running the tests

```
pip install ".[test]"
pytest
```