import pytest

from managed_upgrade.ocmprovider import (
    ClusterIdNotFoundError,
    ClusterInfo,
    ClusterVersionInfo,
    NodeDrainGracePeriod,
    OcmProvider,
    OcmProviderConfig,
    OcmProviderError,
    UpgradePolicy,
    UpgradePolicyState,
    build_upgrade_config_specs,
    infer_upgrade_channel,
    is_actionable_upgrade_policy,
    next_occurring_upgrade_policy,
)
from managed_upgrade.upgradeconfig import Update, UpgradeConfigSpec

TEST_CLUSTER_ID = "111111-2222222-3333333-4444444"
TEST_CLUSTER_ID_MULTI_POLICIES = "444444-333333-222222-111111"
TEST_POLICY_ID_MANUAL = "aaaaaa-bbbbbb-cccccc-dddddd"
TEST_POLICY_ID_AUTOMATIC = "aaaaaa-bbbbbb-cccccc-dddddd"
TEST_UPGRADEPOLICY_UPGRADETYPE = "OSD"
TEST_UPGRADEPOLICY_TIME = "2020-06-20T00:00:00Z"
TEST_UPGRADEPOLICY_TIME_NEXT_OCCURRING = "2020-05-20T00:00:00Z"
TEST_UPGRADEPOLICY_VERSION = "4.4.5"
TEST_UPGRADEPOLICY_CHANNELGROUP = "fast"
TEST_UPGRADEPOLICY_PDB_TIME = 60
TEST_UPGRADEPOLICY_CAPACITY_RESERVATION = True


class FakeOcmClient:
    def __init__(
        self,
        cluster=None,
        cluster_error=None,
        policies=(),
        policies_error=None,
        state=None,
    ):
        self.cluster = cluster
        self.cluster_error = cluster_error
        self.policies = list(policies)
        self.policies_error = policies_error
        self.state = state
        self.calls = []

    def get_cluster(self):
        self.calls.append(("get_cluster",))
        if self.cluster_error is not None:
            raise self.cluster_error
        return self.cluster

    def get_cluster_upgrade_policies(self, cluster_id):
        self.calls.append(("get_cluster_upgrade_policies", cluster_id))
        if self.policies_error is not None:
            raise self.policies_error
        return self.policies

    def get_cluster_upgrade_policy_state(self, policy_id, cluster_id):
        self.calls.append(("get_cluster_upgrade_policy_state", policy_id, cluster_id))
        return self.state


def make_policy(**overrides):
    values = dict(
        id=TEST_POLICY_ID_MANUAL,
        kind="UpgradePolicy",
        href="test",
        schedule="test",
        schedule_type="manual",
        upgrade_type=TEST_UPGRADEPOLICY_UPGRADETYPE,
        version=TEST_UPGRADEPOLICY_VERSION,
        next_run=TEST_UPGRADEPOLICY_TIME,
        cluster_id=TEST_CLUSTER_ID,
    )
    values.update(overrides)
    return UpgradePolicy(**values)


@pytest.fixture
def cluster():
    return ClusterInfo(
        id=TEST_CLUSTER_ID,
        version=ClusterVersionInfo(id="4.4.4", channel_group=TEST_UPGRADEPOLICY_CHANNELGROUP),
        node_drain_grace_period=NodeDrainGracePeriod(
            value=TEST_UPGRADEPOLICY_PDB_TIME, unit="minutes"
        ),
    )


@pytest.fixture
def state():
    return UpgradePolicyState(
        kind="UpgradePolicyState",
        href="test",
        value="scheduled",
        description="Upgrade is scheduled",
    )


def test_infer_channel_from_group_and_version():
    assert infer_upgrade_channel("fast", "4.9.1") == "fast-4.9"


def test_infer_channel_rejects_unparseable_version():
    with pytest.raises(ValueError):
        infer_upgrade_channel("fast", "crashme")


def test_get_returns_specs_if_they_exist(cluster, state):
    expected = UpgradeConfigSpec(
        desired=Update(
            version=TEST_UPGRADEPOLICY_VERSION,
            channel=TEST_UPGRADEPOLICY_CHANNELGROUP + "-4.4",
        ),
        upgrade_at=TEST_UPGRADEPOLICY_TIME,
        pdb_force_drain_timeout=TEST_UPGRADEPOLICY_PDB_TIME,
        type=TEST_UPGRADEPOLICY_UPGRADETYPE,
        capacity_reservation=TEST_UPGRADEPOLICY_CAPACITY_RESERVATION,
    )
    client = FakeOcmClient(cluster=cluster, policies=[make_policy()], state=state)
    specs = OcmProvider(client).get()
    assert expected in specs
    assert client.calls == [
        ("get_cluster",),
        ("get_cluster_upgrade_policies", TEST_CLUSTER_ID),
        ("get_cluster_upgrade_policy_state", TEST_POLICY_ID_MANUAL, TEST_CLUSTER_ID),
    ]


def test_get_returns_next_occurring_spec(cluster, state):
    expected = UpgradeConfigSpec(
        desired=Update(
            version=TEST_UPGRADEPOLICY_VERSION,
            channel=TEST_UPGRADEPOLICY_CHANNELGROUP + "-4.4",
        ),
        upgrade_at=TEST_UPGRADEPOLICY_TIME_NEXT_OCCURRING,
        pdb_force_drain_timeout=TEST_UPGRADEPOLICY_PDB_TIME,
        type=TEST_UPGRADEPOLICY_UPGRADETYPE,
        capacity_reservation=TEST_UPGRADEPOLICY_CAPACITY_RESERVATION,
    )
    policies = [
        make_policy(cluster_id=TEST_CLUSTER_ID_MULTI_POLICIES),
        make_policy(
            id=TEST_POLICY_ID_AUTOMATIC,
            schedule="3 5 5 * *",
            schedule_type="automatic",
            next_run=TEST_UPGRADEPOLICY_TIME_NEXT_OCCURRING,
            cluster_id=TEST_CLUSTER_ID_MULTI_POLICIES,
        ),
    ]
    client = FakeOcmClient(cluster=cluster, policies=policies, state=state)
    specs = OcmProvider(client).get()
    assert expected in specs


def test_get_returns_no_specs_without_policies(cluster):
    client = FakeOcmClient(cluster=cluster, policies=[])
    assert OcmProvider(client).get() == []
    assert ("get_cluster_upgrade_policies", TEST_CLUSTER_ID) in client.calls


def test_get_errors_if_provider_unavailable():
    client = FakeOcmClient(cluster_error=RuntimeError("fake error"))
    with pytest.raises(OcmProviderError, match="OCM Provider unavailable") as info:
        OcmProvider(client).get()
    assert not isinstance(info.value, ClusterIdNotFoundError)


def test_get_errors_if_cluster_id_cannot_be_retrieved():
    client = FakeOcmClient(cluster_error=ClusterIdNotFoundError())
    with pytest.raises(ClusterIdNotFoundError, match="cluster ID can't be found"):
        OcmProvider(client).get()


def test_get_errors_if_cluster_has_empty_id(cluster):
    cluster.id = ""
    with pytest.raises(ClusterIdNotFoundError):
        OcmProvider(FakeOcmClient(cluster=cluster)).get()


def test_get_errors_if_channel_group_missing(cluster):
    cluster.version.channel_group = ""
    with pytest.raises(OcmProviderError, match="channel group not returned or empty"):
        OcmProvider(FakeOcmClient(cluster=cluster)).get()


def test_get_errors_if_policies_cannot_be_retrieved(cluster):
    client = FakeOcmClient(cluster=cluster, policies_error=RuntimeError("fake error"))
    with pytest.raises(OcmProviderError, match="could not retrieve provider upgrade policies"):
        OcmProvider(client).get()


def test_get_ignores_policy_not_scheduled(cluster, state):
    state.value = "somethingelse"
    client = FakeOcmClient(cluster=cluster, policies=[make_policy()], state=state)
    assert OcmProvider(client).get() == []


def test_get_reports_processing_error_for_bad_version(cluster, state):
    client = FakeOcmClient(
        cluster=cluster, policies=[make_policy(version="crashme")], state=state
    )
    with pytest.raises(OcmProviderError, match="could not process provider upgrade policies"):
        OcmProvider(client).get()


def test_get_propagates_bad_next_run(cluster, state):
    client = FakeOcmClient(
        cluster=cluster, policies=[make_policy(next_run="not a time")], state=state
    )
    with pytest.raises(ValueError):
        OcmProvider(client).get()


def test_actionable_normal_manual_policy(state):
    assert is_actionable_upgrade_policy(make_policy(), state) is True


def test_not_actionable_without_version(state):
    assert is_actionable_upgrade_policy(make_policy(version=""), state) is False


def test_not_actionable_when_not_scheduled(state):
    state.value = "somethingelse"
    assert is_actionable_upgrade_policy(make_policy(version=""), state) is False


def test_actionable_state_is_case_insensitive(state):
    state.value = "SCHEDULED"
    assert is_actionable_upgrade_policy(make_policy(), state) is True


def test_next_occurring_keeps_first_on_tie():
    first = make_policy(id="first")
    second = make_policy(id="second")
    assert next_occurring_upgrade_policy([first, second]).id == "first"


def test_next_occurring_picks_earliest():
    later = make_policy(id="later")
    sooner = make_policy(id="sooner", next_run=TEST_UPGRADEPOLICY_TIME_NEXT_OCCURRING)
    assert next_occurring_upgrade_policy([later, sooner]).id == "sooner"


def test_build_specs_respects_explicit_capacity_reservation_false(cluster):
    specs = build_upgrade_config_specs(make_policy(capacity_reservation=False), cluster)
    assert len(specs) == 1
    assert specs[0].capacity_reservation is False


def test_build_specs_defaults_capacity_reservation_true(cluster):
    specs = build_upgrade_config_specs(make_policy(capacity_reservation=True), cluster)
    assert specs[0].capacity_reservation is True
    assert specs[0].pdb_force_drain_timeout == TEST_UPGRADEPOLICY_PDB_TIME
    assert specs[0].type == TEST_UPGRADEPOLICY_UPGRADETYPE


def test_config_parses_base_url():
    config = OcmProviderConfig(ocm_base_url="https://api.example.com")
    config.is_valid()
    parsed = config.ocm_base_url()
    assert parsed.netloc == "api.example.com"
    assert parsed.scheme == "https"


def test_config_rejects_unparseable_url():
    config = OcmProviderConfig(ocm_base_url="http://[::1")
    with pytest.raises(OcmProviderError, match="not a parseable URL"):
        config.is_valid()
    assert config.ocm_base_url() is None