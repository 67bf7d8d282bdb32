"""Tests for the manifest package.

| Test File                  | Test Classes                 | Tested Constructs                          | Tested Functionalities              |
|----------------------------|------------------------------|--------------------------------------------|-------------------------------------|
| test_manifest_store.py     | ManifestStoreTest            | ManifestStore, BlobRecord, LinkRecord      | DB write/read, updates, info file   |
"""
