# Copyright 2026 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0

"""Remote existence probes for the four publish targets.

Each probe answers one question: is this exact version already out
there? The publish-eligibility engine combines the answer with the
package's declared intent.

    ┌──────────┬──────────────────────────────┬──────────────────────────────┐
    │ Target   │ Probe                        │ Request                      │
    ├──────────┼──────────────────────────────┼──────────────────────────────┤
    │ cargo    │ CargoRegistryProbe           │ GET {crate_url}{name}        │
    │ docker   │ OciRegistryProbe             │ GET /v2/{name}/manifests/tag │
    │ npm      │ NpmRegistryProbe             │ GET {registry}{package}      │
    │ binary   │ AzureBlobStore / S3BlobStore │ SDK exists() / HEAD {blob}   │
    └──────────┴──────────────────────────────┴──────────────────────────────┘

HTTP goes through :func:`cratekit.net.http_client` (or one client shared
by a whole check run) and :func:`cratekit.net.request_with_retry`. The
Azure store uses the Azure SDK's own transport.
"""

from cratekit.backends.registry.blob import (
    AzureBlobStore as AzureBlobStore,
    BlobStore as BlobStore,
    S3BlobStore as S3BlobStore,
    blob_path as blob_path,
    make_blob_store as make_blob_store,
)
from cratekit.backends.registry.cargo import CargoRegistryProbe as CargoRegistryProbe
from cratekit.backends.registry.npm import NpmConfig as NpmConfig, NpmRegistryProbe as NpmRegistryProbe
from cratekit.backends.registry.oci import (
    DockerCredentials as DockerCredentials,
    OciRegistryProbe as OciRegistryProbe,
    RegistryAuth as RegistryAuth,
)

__all__ = [
    'AzureBlobStore',
    'BlobStore',
    'CargoRegistryProbe',
    'DockerCredentials',
    'NpmConfig',
    'NpmRegistryProbe',
    'OciRegistryProbe',
    'RegistryAuth',
    'S3BlobStore',
    'blob_path',
    'make_blob_store',
]
