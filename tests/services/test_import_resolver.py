"""
Tests for Solidity import resolution
"""
import pytest
import requests
from unittest.mock import Mock
from api.services.import_resolver import ImportCache, ImportResolver


def http_returning(status_code=200, text="// remote"):
    http = Mock()
    http.get.return_value = Mock(status_code=status_code, text=text)
    return http


@pytest.fixture
def project_root(tmp_path):
    (tmp_path / "lib").mkdir()
    (tmp_path / "lib" / "Local.sol").write_text("// local")
    (tmp_path / "node_modules" / "@acme" / "pkg").mkdir(parents=True)
    (tmp_path / "node_modules" / "@acme" / "pkg" / "Thing.sol").write_text("// package")
    (tmp_path / "contracts").mkdir()
    (tmp_path / "contracts" / "Fallback.sol").write_text("// fallback")
    return tmp_path


class TestImportResolver:
    """Lookup order and caching"""

    def test_local_file_under_root(self, project_root):
        resolver = ImportResolver(root=project_root, http=http_returning())
        result = resolver.resolve("lib/Local.sol")
        assert result.found
        assert result.contents == "// local"

    def test_leading_dot_slash_is_stripped_for_local_lookup(self, project_root):
        resolver = ImportResolver(root=project_root, http=http_returning())
        assert resolver.resolve("./lib/Local.sol").contents == "// local"

    def test_package_directory(self, project_root):
        http = http_returning()
        resolver = ImportResolver(root=project_root, http=http)
        assert resolver.resolve("@acme/pkg/Thing.sol").contents == "// package"
        http.get.assert_not_called()

    def test_openzeppelin_is_fetched_from_pinned_tag(self, project_root):
        http = http_returning(text="// Ownable")
        resolver = ImportResolver(root=project_root, http=http, openzeppelin_version="v5.0.2")

        result = resolver.resolve("@openzeppelin/contracts/access/Ownable.sol")

        assert result.contents == "// Ownable"
        url = http.get.call_args[0][0]
        assert url == (
            "https://raw.githubusercontent.com/OpenZeppelin/openzeppelin-contracts/"
            "v5.0.2/contracts/access/Ownable.sol"
        )

    def test_chainlink_is_fetched_from_pinned_tag(self, project_root):
        http = http_returning(text="// feed")
        resolver = ImportResolver(root=project_root, http=http, chainlink_version="contracts-v1.3.0")

        resolver.resolve("@chainlink/contracts/src/v0.8/shared/interfaces/AggregatorV3Interface.sol")

        url = http.get.call_args[0][0]
        assert url.startswith("https://raw.githubusercontent.com/smartcontractkit/chainlink/contracts-v1.3.0/contracts/")
        assert url.endswith("src/v0.8/shared/interfaces/AggregatorV3Interface.sol")

    def test_http_url(self, project_root):
        http = http_returning(text="// from url")
        resolver = ImportResolver(root=project_root, http=http)
        assert resolver.resolve("https://example.com/A.sol").contents == "// from url"

    def test_relative_import_falls_back_to_contracts_dir(self, project_root):
        resolver = ImportResolver(root=project_root, http=http_returning())
        assert resolver.resolve("./Fallback.sol").contents == "// fallback"

    def test_absolute_path_outside_root_is_not_read(self, tmp_path):
        secret = tmp_path / "secret.txt"
        secret.write_text("hunter2")
        root = tmp_path / "project"
        root.mkdir()
        http = http_returning()

        result = ImportResolver(root=root, http=http).resolve(str(secret))

        assert not result.found
        http.get.assert_not_called()

    def test_parent_traversal_is_not_read(self, tmp_path):
        (tmp_path / "secret.sol").write_text("// outside")
        root = tmp_path / "project"
        (root / "contracts").mkdir(parents=True)

        result = ImportResolver(root=root, http=http_returning()).resolve("../secret.sol")

        assert not result.found
        assert result.error == "File not found: ../secret.sol"

    def test_not_found(self, project_root):
        resolver = ImportResolver(root=project_root, http=http_returning())
        result = resolver.resolve("missing/Nope.sol")
        assert not result.found
        assert result.error == "File not found: missing/Nope.sol"

    def test_failed_download_is_not_found_and_not_cached(self, project_root):
        cache = ImportCache()
        http = Mock()
        http.get.side_effect = requests.ConnectionError("offline")
        resolver = ImportResolver(root=project_root, http=http, cache=cache)

        result = resolver.resolve("@openzeppelin/contracts/access/Ownable.sol")

        assert not result.found
        assert len(cache) == 0

    def test_non_2xx_download_is_not_found(self, project_root):
        resolver = ImportResolver(root=project_root, http=http_returning(status_code=404))
        assert not resolver.resolve("@openzeppelin/contracts/access/Missing.sol").found

    def test_second_lookup_served_from_cache(self, project_root):
        cache = ImportCache()
        http = http_returning(text="// Ownable")
        resolver = ImportResolver(root=project_root, http=http, cache=cache)

        first = resolver.resolve("@openzeppelin/contracts/access/Ownable.sol")
        second = resolver.resolve("@openzeppelin/contracts/access/Ownable.sol")

        assert first.contents == second.contents
        assert http.get.call_count == 1
        assert "@openzeppelin/contracts/access/Ownable.sol" in cache
