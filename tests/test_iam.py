import json

import pytest
import responses

from guardian.iam import (
    AssetIAM,
    Binding,
    IAMClient,
    IAMCondition,
    IAMError,
    Policy,
    ResourceType,
    policy_from_dict,
    policy_to_asset_iam,
    policy_to_dict,
    remove_from_policy,
)
from guardian.retry import RetryConfig

BASE = "https://cloudresourcemanager.googleapis.com/v3"
USER = "user:someone@example.com"
SA = "serviceAccount:robot@example.com"


@pytest.fixture
def mocked():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


def _condition():
    return IAMCondition(
        title="my-condition", expression="request.time > 0", description="my description"
    )


REMOVE_CASES = [
    (
        "success_no_condition",
        AssetIAM("123", ResourceType.FOLDER.value, "roles/editor", USER),
        Policy(
            etag="asdasda123",
            bindings=[
                Binding(role="roles/viewer", members=[USER, SA]),
                Binding(role="roles/editor", members=[USER, SA]),
            ],
            version=3,
        ),
        Policy(
            etag="asdasda123",
            bindings=[
                Binding(role="roles/viewer", members=[USER, SA]),
                Binding(role="roles/editor", members=[SA]),
            ],
            version=3,
        ),
    ),
    (
        "success_condition",
        AssetIAM("123", ResourceType.FOLDER.value, "roles/editor", USER, _condition()),
        Policy(
            etag="asdasda123",
            bindings=[
                Binding(role="roles/viewer", members=[USER, SA]),
                Binding(role="roles/editor", members=[SA]),
                Binding(role="roles/editor", members=[USER], condition=_condition()),
            ],
            version=3,
        ),
        Policy(
            etag="asdasda123",
            bindings=[
                Binding(role="roles/viewer", members=[USER, SA]),
                Binding(role="roles/editor", members=[SA]),
            ],
            version=3,
        ),
    ),
    (
        "success_no_match_condition",
        AssetIAM("123", ResourceType.FOLDER.value, "roles/editor", USER, _condition()),
        Policy(
            etag="asdasda123",
            bindings=[
                Binding(role="roles/viewer", members=[USER, SA]),
                Binding(role="roles/editor", members=[USER, SA]),
            ],
            version=3,
        ),
        Policy(
            etag="asdasda123",
            bindings=[
                Binding(role="roles/viewer", members=[USER, SA]),
                Binding(role="roles/editor", members=[USER, SA]),
            ],
            version=3,
        ),
    ),
]


@pytest.mark.parametrize(
    "member,policy,want", [c[1:] for c in REMOVE_CASES], ids=[c[0] for c in REMOVE_CASES]
)
def test_remove_from_policy(member, policy, want):
    assert remove_from_policy(policy, member) == want


def test_remove_from_policy_leaves_input_untouched():
    policy = Policy(bindings=[Binding(role="roles/editor", members=[USER, SA])])
    remove_from_policy(policy, AssetIAM("1", "Project", "roles/editor", USER))
    assert policy.bindings[0].members == [USER, SA]


def test_condition_describe_omits_empty_parts():
    assert IAMCondition(expression="a > b").describe() == "expression=a > b"
    assert _condition().describe() == (
        "expression=request.time > 0,title=my-condition,description=my description"
    )


def test_policy_to_asset_iam():
    policy = Policy(
        bindings=[
            Binding(role="roles/viewer", members=[USER, SA]),
            Binding(role="roles/owner", members=[SA]),
        ]
    )
    assert policy_to_asset_iam("42", "Project", policy) == [
        AssetIAM("42", "Project", "roles/viewer", USER),
        AssetIAM("42", "Project", "roles/viewer", SA),
        AssetIAM("42", "Project", "roles/owner", SA),
    ]


def test_policy_dict_round_trip():
    data = {
        "bindings": [
            {"role": "roles/viewer", "members": [USER]},
            {
                "role": "roles/editor",
                "members": [SA],
                "condition": {"expression": "true", "title": "t"},
            },
        ],
        "etag": "BwX=",
        "version": 3,
        "auditConfigs": [{"service": "allServices"}],
    }
    policy = policy_from_dict(data)
    assert policy.bindings[1].condition == IAMCondition(expression="true", title="t")
    assert policy.extra == {"auditConfigs": [{"service": "allServices"}]}
    assert policy_to_dict(policy) == data


def _policy_json(*bindings):
    return {"version": 3, "etag": "abc", "bindings": list(bindings)}


def test_project_iam_lists_members(mocked):
    mocked.add(
        responses.POST,
        f"{BASE}/projects/p1:getIamPolicy",
        json=_policy_json({"role": "roles/viewer", "members": [USER, SA]}),
    )
    client = IAMClient("token")
    got = client.project_iam("p1")
    assert got == [
        AssetIAM("p1", "Project", "roles/viewer", USER),
        AssetIAM("p1", "Project", "roles/viewer", SA),
    ]
    request = mocked.calls[0].request
    assert json.loads(request.body) == {"options": {"requestedPolicyVersion": 3}}
    assert request.headers["Authorization"] == "Bearer token"


def test_folder_and_organization_iam_use_their_resources(mocked):
    mocked.add(
        responses.POST,
        f"{BASE}/folders/f1:getIamPolicy",
        json=_policy_json({"role": "roles/viewer", "members": [USER]}),
    )
    mocked.add(
        responses.POST,
        f"{BASE}/organizations/o1:getIamPolicy",
        json=_policy_json({"role": "roles/browser", "members": [SA]}),
    )
    client = IAMClient()
    assert client.folder_iam("f1") == [AssetIAM("f1", "Folder", "roles/viewer", USER)]
    assert client.organization_iam("o1") == [
        AssetIAM("o1", "Organization", "roles/browser", SA)
    ]


def test_project_iam_error(mocked):
    mocked.add(responses.POST, f"{BASE}/projects/p1:getIamPolicy", status=403, json={})
    with pytest.raises(IAMError) as info:
        IAMClient().project_iam("p1")
    assert info.value.status_code == 403


def test_remove_project_iam_sets_pruned_policy(mocked):
    mocked.add(
        responses.POST,
        f"{BASE}/projects/p1:getIamPolicy",
        json=_policy_json(
            {"role": "roles/viewer", "members": [USER, SA]},
            {"role": "roles/editor", "members": [USER]},
        ),
    )
    mocked.add(responses.POST, f"{BASE}/projects/p1:setIamPolicy", json={})
    result = IAMClient().remove_project_iam(AssetIAM("p1", "Project", "roles/editor", USER))
    assert result is None
    body = json.loads(mocked.calls[1].request.body)
    assert body == {
        "policy": {
            "version": 3,
            "etag": "abc",
            "bindings": [{"role": "roles/viewer", "members": [USER, SA]}],
        }
    }


def test_remove_folder_iam_retries_while_propagating(mocked):
    mocked.add(responses.POST, f"{BASE}/folders/f1:getIamPolicy", status=412, json={})
    mocked.add(
        responses.POST,
        f"{BASE}/folders/f1:getIamPolicy",
        json=_policy_json({"role": "roles/viewer", "members": [USER, SA]}),
    )
    mocked.add(responses.POST, f"{BASE}/folders/f1:setIamPolicy", json={})
    sleeps = []
    client = IAMClient(config=RetryConfig(max_retries=2, initial_delay=0.5), sleep=sleeps.append)
    client.remove_folder_iam(AssetIAM("f1", "Folder", "roles/viewer", USER))
    assert sleeps == [0.5]
    body = json.loads(mocked.calls[-1].request.body)
    assert body["policy"]["bindings"] == [{"role": "roles/viewer", "members": [SA]}]


def test_remove_organization_iam_gives_up_after_retries(mocked):
    mocked.add(responses.POST, f"{BASE}/organizations/o1:getIamPolicy", status=500, json={})
    sleeps = []
    client = IAMClient(config=RetryConfig(max_retries=2, initial_delay=0.5), sleep=sleeps.append)
    with pytest.raises(IAMError, match="failed to remove organization IAM") as info:
        client.remove_organization_iam(AssetIAM("o1", "Organization", "roles/browser", USER))
    assert info.value.status_code == 500
    assert sleeps == [0.5, 0.5]
    assert len(mocked.calls) == 3


def test_remove_project_iam_does_not_retry_on_permission_denied(mocked):
    mocked.add(responses.POST, f"{BASE}/projects/p1:getIamPolicy", status=403, json={})
    sleeps = []
    client = IAMClient(sleep=sleeps.append)
    with pytest.raises(IAMError, match="failed to remove project IAM"):
        client.remove_project_iam(AssetIAM("p1", "Project", "roles/editor", USER))
    assert sleeps == []
    assert len(mocked.calls) == 1