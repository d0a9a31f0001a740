"""
Kubernetes Platform Client Test Suite
Idempotent apply, error mapping and transient retries
"""

import unittest
from unittest.mock import MagicMock, patch

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import MaxRetryError

from fake_platform import make_instance

from swift_operator import resources
from swift_operator.errors import ConflictError, PlatformError
from swift_operator.kube import ApplyResult, KubePlatform, is_subset


class TestIsSubset(unittest.TestCase):
    """Desired-state comparison"""

    def test_server_defaults_ignored(self):
        desired = {"spec": {"ports": [{"port": 873}]}}
        live = {"spec": {"ports": [{"port": 873, "protocol": "TCP"}]}, "status": {}}
        self.assertTrue(is_subset(desired, live))

    def test_changed_value_detected(self):
        self.assertFalse(is_subset({"spec": {"replicas": 3}}, {"spec": {"replicas": 1}}))

    def test_list_length_must_match(self):
        self.assertFalse(is_subset({"items": [1]}, {"items": [1, 2]}))

    def test_missing_key_detected(self):
        self.assertFalse(is_subset({"data": {"a": "1"}}, {"data": {}}))


class TestKubePlatform(unittest.TestCase):
    """Kubernetes API access"""

    def setUp(self):
        self.platform = KubePlatform(client.ApiClient())
        self.platform.core_v1 = MagicMock()
        self.platform.apps_v1 = MagicMock()
        self.platform.networking_v1 = MagicMock()
        self.platform.custom_api = MagicMock()
        self.instance = make_instance(replicas=1)
        self.config_map = resources.device_config_map(self.instance, "alpha-0.alpha,d1,10\n")

    # --- Apply ---
    def test_apply_creates_missing_object(self):
        core = self.platform.core_v1
        core.read_namespaced_config_map.side_effect = ApiException(status=404, reason="Not Found")
        core.create_namespaced_config_map.return_value = self.config_map

        result, live = self.platform.apply(self.config_map)

        self.assertEqual(result, ApplyResult.CREATED)
        self.assertEqual(live["data"], {"devices.csv": "alpha-0.alpha,d1,10\n"})
        body = core.create_namespaced_config_map.call_args.kwargs["body"]
        self.assertEqual(body["metadata"]["ownerReferences"][0]["name"], "alpha")
        core.patch_namespaced_config_map.assert_not_called()

    def test_apply_leaves_matching_object(self):
        live = client.V1ConfigMap(
            api_version="v1", kind="ConfigMap",
            metadata=client.V1ObjectMeta(
                name="swift-storage-config-data", namespace="openstack", resource_version="7",
                owner_references=self.config_map.metadata.owner_references),
            data={"devices.csv": "alpha-0.alpha,d1,10\n"},
        )
        self.platform.core_v1.read_namespaced_config_map.return_value = live

        result, _ = self.platform.apply(self.config_map)

        self.assertEqual(result, ApplyResult.UNCHANGED)
        self.platform.core_v1.create_namespaced_config_map.assert_not_called()
        self.platform.core_v1.patch_namespaced_config_map.assert_not_called()

    def test_apply_patches_drifted_object(self):
        live = client.V1ConfigMap(
            api_version="v1", kind="ConfigMap",
            metadata=client.V1ObjectMeta(name="swift-storage-config-data", namespace="openstack"),
            data={"devices.csv": "stale"},
        )
        self.platform.core_v1.read_namespaced_config_map.return_value = live
        self.platform.core_v1.patch_namespaced_config_map.return_value = self.config_map

        result, _ = self.platform.apply(self.config_map)

        self.assertEqual(result, ApplyResult.PATCHED)
        kwargs = self.platform.core_v1.patch_namespaced_config_map.call_args.kwargs
        self.assertEqual(kwargs["name"], "swift-storage-config-data")
        self.assertEqual(kwargs["namespace"], "openstack")

    def test_apply_routes_stateful_sets(self):
        sts = resources.storage_stateful_set(self.instance, {"component": "swift-storage"})
        self.platform.apps_v1.read_namespaced_stateful_set.side_effect = ApiException(status=404)
        self.platform.apps_v1.create_namespaced_stateful_set.return_value = sts
        result, _ = self.platform.apply(sts)
        self.assertEqual(result, ApplyResult.CREATED)
        self.platform.apps_v1.create_namespaced_stateful_set.assert_called_once()

    def test_apply_rejects_unknown_kind(self):
        with self.assertRaises(ValueError):
            self.platform.apply(client.V1Secret(
                kind="Secret", metadata=client.V1ObjectMeta(name="s", namespace="openstack")))

    # --- Error Mapping ---
    def test_reads_return_none_when_missing(self):
        self.platform.core_v1.read_namespaced_config_map.side_effect = ApiException(status=404)
        self.assertIsNone(self.platform.get_config_map("openstack", "swift-ring-files"))
        self.platform.custom_api.get_namespaced_custom_object.side_effect = ApiException(status=404)
        self.assertIsNone(self.platform.get_swift_storage("openstack", "alpha"))

    def test_conflict_is_not_retried(self):
        api = self.platform.custom_api
        api.patch_namespaced_custom_object.side_effect = ApiException(status=409, reason="Conflict")
        with self.assertRaises(ConflictError):
            self.platform.update_swift_storage_replicas("openstack", "alpha", 3, "12")
        self.assertEqual(api.patch_namespaced_custom_object.call_count, 1)
        body = api.patch_namespaced_custom_object.call_args.kwargs["body"]
        self.assertEqual(body, {"spec": {"replicas": 3}, "metadata": {"resourceVersion": "12"}})

    def test_client_error_is_not_retried(self):
        self.platform.core_v1.read_namespaced_persistent_volume_claim.side_effect = ApiException(status=403)
        with self.assertRaises(PlatformError) as ctx:
            self.platform.get_persistent_volume_claim("openstack", "swift-alpha-0")
        self.assertEqual(ctx.exception.status, 403)
        self.assertFalse(ctx.exception.transient)

    @patch("time.sleep")
    def test_transient_error_is_retried(self, _sleep):
        api = self.platform.apps_v1
        api.read_namespaced_stateful_set.side_effect = [
            ApiException(status=503, reason="Unavailable"),
            resources.storage_stateful_set(self.instance, {"component": "swift-storage"}),
        ]
        live = self.platform.get_stateful_set("openstack", "alpha")
        self.assertEqual(live["metadata"]["name"], "alpha")
        self.assertEqual(api.read_namespaced_stateful_set.call_count, 2)

    @patch("time.sleep")
    def test_retries_are_bounded(self, _sleep):
        api = self.platform.custom_api
        api.patch_namespaced_custom_object_status.side_effect = MaxRetryError(None, "/apis", "refused")
        with self.assertRaises(PlatformError) as ctx:
            self.platform.patch_swift_storage_status("openstack", "alpha", {"readyCount": 0})
        self.assertTrue(ctx.exception.transient)
        self.assertEqual(api.patch_namespaced_custom_object_status.call_count, 3)

    def test_status_patch_targets_status_subresource(self):
        api = self.platform.custom_api
        api.patch_namespaced_custom_object_status.return_value = {"status": {"readyCount": 1}}
        self.platform.patch_swift_storage_status("openstack", "alpha", {"readyCount": 1})
        kwargs = api.patch_namespaced_custom_object_status.call_args.kwargs
        self.assertEqual(kwargs["body"], {"status": {"readyCount": 1}})
        self.assertEqual(kwargs["plural"], "swiftstorages")
        self.assertEqual(kwargs["group"], "swift.openstack.org")


if __name__ == "__main__":
    unittest.main()
