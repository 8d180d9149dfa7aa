import io
import json

import pytest

from guardian.iam import AssetIAM
from guardian.parser import HierarchyNode, ParserError, TerraformParser
from guardian.storage import Storage, StorageError

ORG_ID = "1231231"
FOLDER = HierarchyNode(
    id="123123123123",
    name="123123123123",
    node_type="Folder",
    parent_id=ORG_ID,
    parent_type="Organization",
)
PROJECT = HierarchyNode(
    id="1231232222",
    name="my-project",
    node_type="Project",
    parent_id=FOLDER.id,
    parent_type="Folder",
)
URI = "gs://my-bucket-123/abcsdasd/12312/default.tfstate"

VALID_STATE = json.dumps(
    {
        "version": 4,
        "resources": [
            {
                "type": "google_organization_iam_binding",
                "instances": [
                    {
                        "attributes": {
                            "id": "1231231/roles/browser",
                            "members": [
                                "group:team@example.com",
                                "serviceAccount:robot@example.com",
                                "user:someone@example.com",
                            ],
                            "role": "roles/browser",
                        }
                    }
                ],
            },
            {
                "type": "google_folder_iam_member",
                "instances": [
                    {
                        "attributes": {
                            "id": "folders/123123123123/roles/viewer",
                            "folder": "folders/123123123123",
                            "member": "group:team@example.com",
                            "role": "roles/viewer",
                        }
                    }
                ],
            },
            {
                "type": "google_project_iam_member",
                "instances": [
                    {
                        "attributes": {
                            "id": "my-project/roles/compute.admin",
                            "project": "my-project",
                            "member": "serviceAccount:robot@example.com",
                            "role": "roles/compute.admin",
                        }
                    }
                ],
            },
        ],
    },
    indent=2,
)

IGNORED_STATE = json.dumps(
    {
        "resources": [
            {
                "type": "google_storage_bucket_iam_binding",
                "instances": [
                    {"attributes": {"members": ["user:someone@example.com"], "role": "roles/viewer"}}
                ],
            },
            {
                "type": "google_service_account_iam_member",
                "instances": [
                    {"attributes": {"member": "user:someone@example.com", "role": "roles/owner"}}
                ],
            },
        ]
    }
)


class FakeStorage(Storage):
    def __init__(self, objects=None, download_data="", list_error=None, download_error=None):
        self.objects = objects or {}
        self.download_data = download_data
        self.list_error = list_error
        self.download_error = download_error
        self.downloads = []

    def upload_object(self, bucket, name, contents, **kwargs):
        raise StorageError("read only")

    def download_object(self, bucket, name):
        if self.download_error is not None:
            raise self.download_error
        self.downloads.append((bucket, name))
        return io.BytesIO(self.download_data.encode())

    def object_metadata(self, bucket, name):
        return {}

    def delete_object(self, bucket, name):
        raise StorageError("read only")

    def objects_with_name(self, bucket, filename):
        if self.list_error is not None:
            raise self.list_error
        return [uri for uri in self.objects.get(bucket, []) if uri.endswith(filename)]


def test_state_file_uris_success():
    gcs = FakeStorage(
        objects={
            "my-bucket-123": [
                "gs://my-bucket-123/abcsdasd/12312/default.tfstate",
                "gs://my-bucket-123/abcsdasd/12313/default.tfstate",
            ]
        }
    )
    parser = TerraformParser(gcs)
    assert parser.state_file_uris(["my-bucket-123"]) == [
        "gs://my-bucket-123/abcsdasd/12312/default.tfstate",
        "gs://my-bucket-123/abcsdasd/12313/default.tfstate",
    ]


def test_state_file_uris_joins_buckets_in_order():
    gcs = FakeStorage(
        objects={
            "a": ["gs://a/x/default.tfstate", "gs://a/other.txt"],
            "b": ["gs://b/y/default.tfstate"],
        }
    )
    assert TerraformParser(gcs).state_file_uris(["b", "a"]) == [
        "gs://b/y/default.tfstate",
        "gs://a/x/default.tfstate",
    ]


def test_state_file_uris_failure():
    gcs = FakeStorage(list_error=StorageError("Failed cause 404"))
    with pytest.raises(ParserError, match="Failed cause 404"):
        TerraformParser(gcs).state_file_uris(["my-bucket-123"])


def test_process_states_success_with_known_assets():
    parser = TerraformParser(FakeStorage(download_data=VALID_STATE), ORG_ID)
    parser.set_assets({FOLDER.id: FOLDER}, {PROJECT.id: PROJECT})
    assert parser.process_states([URI]) == [
        AssetIAM("1231231", "Organization", "roles/browser", "group:team@example.com"),
        AssetIAM("1231231", "Organization", "roles/browser", "serviceAccount:robot@example.com"),
        AssetIAM("1231231", "Organization", "roles/browser", "user:someone@example.com"),
        AssetIAM("123123123123", "Folder", "roles/viewer", "group:team@example.com"),
        AssetIAM("1231232222", "Project", "roles/compute.admin", "serviceAccount:robot@example.com"),
    ]


def test_process_states_success_no_known_assets():
    parser = TerraformParser(FakeStorage(download_data=VALID_STATE), ORG_ID)
    assert parser.process_states([URI]) == [
        AssetIAM("1231231", "Organization", "roles/browser", "group:team@example.com"),
        AssetIAM("1231231", "Organization", "roles/browser", "serviceAccount:robot@example.com"),
        AssetIAM("1231231", "Organization", "roles/browser", "user:someone@example.com"),
        AssetIAM("123123123123", "Unknown", "roles/viewer", "group:team@example.com"),
        AssetIAM("my-project", "Unknown", "roles/compute.admin", "serviceAccount:robot@example.com"),
    ]


def test_process_states_downloads_split_uri():
    gcs = FakeStorage(download_data=VALID_STATE)
    TerraformParser(gcs, ORG_ID).process_states([URI])
    assert gcs.downloads == [("my-bucket-123", "abcsdasd/12312/default.tfstate")]


def test_process_states_ignores_unsupported_iam_bindings():
    parser = TerraformParser(FakeStorage(download_data=IGNORED_STATE), ORG_ID)
    assert parser.process_states([URI]) == []


def test_process_states_failure():
    gcs = FakeStorage(download_data=VALID_STATE, download_error=StorageError("Failed cause 404"))
    with pytest.raises(ParserError, match="Failed cause 404"):
        TerraformParser(gcs, ORG_ID).process_states([URI])


def test_process_states_invalid_uri():
    parser = TerraformParser(FakeStorage(download_data=VALID_STATE), ORG_ID)
    with pytest.raises(ParserError, match="failed to parse GCS URI"):
        parser.process_states(["gs://bucket-only"])


def test_process_states_invalid_json():
    parser = TerraformParser(FakeStorage(download_data="{not json"), ORG_ID)
    with pytest.raises(ParserError, match="failed to decode terraform state"):
        parser.process_states([URI])


def test_process_states_wrong_shape():
    parser = TerraformParser(FakeStorage(download_data='{"resources": "nope"}'), ORG_ID)
    with pytest.raises(ParserError, match="resources"):
        parser.process_states([URI])


def test_process_states_multiple_uris_accumulate():
    parser = TerraformParser(FakeStorage(download_data=VALID_STATE), ORG_ID)
    assert len(parser.process_states([URI, URI])) == 10


def test_binding_for_project_and_folder_by_numeric_id():
    state = json.dumps(
        {
            "resources": [
                {
                    "type": "google_project_iam_binding",
                    "instances": [
                        {
                            "attributes": {
                                "project": "1231232222",
                                "members": ["user:a@example.com", "user:b@example.com"],
                                "role": "roles/owner",
                            }
                        }
                    ],
                },
                {
                    "type": "google_folder_iam_binding",
                    "instances": [
                        {
                            "attributes": {
                                "folder": "folders/999",
                                "members": ["user:a@example.com"],
                                "role": "roles/viewer",
                            }
                        }
                    ],
                },
            ]
        }
    )
    parser = TerraformParser(FakeStorage(download_data=state), ORG_ID)
    parser.set_assets({FOLDER.id: FOLDER}, {PROJECT.id: PROJECT})
    assert parser.process_states([URI]) == [
        AssetIAM("1231232222", "Project", "roles/owner", "user:a@example.com"),
        AssetIAM("1231232222", "Project", "roles/owner", "user:b@example.com"),
        AssetIAM("999", "Unknown", "roles/viewer", "user:a@example.com"),
    ]


def test_organization_member():
    state = json.dumps(
        {
            "resources": [
                {
                    "type": "google_organization_iam_member",
                    "instances": [
                        {"attributes": {"member": "user:a@example.com", "role": "roles/viewer"}}
                    ],
                }
            ]
        }
    )
    parser = TerraformParser(FakeStorage(download_data=state), ORG_ID)
    assert parser.process_states([URI]) == [
        AssetIAM(ORG_ID, "Organization", "roles/viewer", "user:a@example.com")
    ]


def test_state_without_resources_true():
    state = '{\n  "version": 4,\n  "resources": [],\n  "check_results": null\n}'
    parser = TerraformParser(FakeStorage(download_data=state))
    assert parser.state_without_resources(URI) is True


def test_state_without_resources_false():
    parser = TerraformParser(FakeStorage(download_data=VALID_STATE))
    assert parser.state_without_resources(URI) is False


def test_state_without_resources_download_failure():
    gcs = FakeStorage(download_error=StorageError("Failed cause 404"))
    with pytest.raises(ParserError, match="Failed cause 404"):
        TerraformParser(gcs).state_without_resources(URI)