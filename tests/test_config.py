"""
Tests for configuration loading, validation and argument parsing.
"""

import pytest

from face2head.config import (
    Config,
    ExportConfig,
    HeadConfig,
    create_argument_parser,
)

yaml = pytest.importorskip("yaml")


def _parse(argv):
    return create_argument_parser().parse_args(argv)


class TestDefaults:
    """Test documented defaults."""

    def test_section_defaults(self):
        config = Config(image_file="a.png", landmarks_file="a.json")

        assert config.frame.padding == 0.2
        assert config.texture.size == 1024
        assert config.head.layers == 6
        assert config.head.falloff == "cosine"
        assert config.morph.intensity == 0.1
        assert config.pose.enabled
        assert not config.pose.include_translation
        assert config.export.morph_convention == "relative"

    def test_template_parses(self):
        """The commented template is valid YAML with every section."""
        data = yaml.safe_load(Config.generate_default_config_template())
        for section in ("frame", "texture", "skin_tone", "head", "morph",
                        "blendshapes", "pose", "export"):
            assert section in data
        assert data["frame"]["min_extent"] == pytest.approx(1e-6)


class TestValidate:
    """Test Config.validate()."""

    def test_bad_falloff(self):
        config = Config(image_file="a.png", landmarks_file="a.json",
                        head=HeadConfig(falloff="cubic"))
        with pytest.raises(ValueError, match="falloff"):
            config.validate()

    def test_bad_convention(self):
        config = Config(image_file="a.png", landmarks_file="a.json",
                        export=ExportConfig(morph_convention="sparse"))
        with pytest.raises(ValueError, match="convention"):
            config.validate()

    def test_bad_texture_size(self):
        config = Config(image_file="a.png", landmarks_file="a.json")
        config.texture.size = 0
        with pytest.raises(ValueError, match="Texture size"):
            config.validate()


class TestYaml:
    """Test YAML round trip."""

    def test_round_trip(self, tmp_path):
        config = Config(image_file="photo.png", landmarks_file="lm.json")
        config.head.layers = 4
        config.head.falloff = "linear"
        config.blendshapes.heuristics = False
        config.pose.include_translation = True
        config.export.name = "avatar"

        path = tmp_path / "config.yaml"
        config.to_yaml(str(path))
        loaded = Config.from_yaml(str(path))

        assert loaded == config

    def test_partial_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "image_file: photo.png\n"
            "landmarks_file: lm.json\n"
            "head:\n"
            "  layers: 3\n"
        )

        config = Config.from_yaml(str(path))

        assert config.head.layers == 3
        assert config.head.max_depth == 1.4
        assert config.texture.size == 1024

    def test_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("image_file: photo.png\nlandmarks_file: lm.json\n")

        config = Config.from_yaml(str(path), image_file_override="other.png")

        assert config.image_file == "other.png"
        assert config.landmarks_file == "lm.json"

    def test_missing_inputs(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("head:\n  layers: 3\n")

        with pytest.raises(ValueError, match="image_file"):
            Config.from_yaml(str(path))

    def test_invalid_values_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "image_file: photo.png\n"
            "landmarks_file: lm.json\n"
            "export:\n"
            "  morph_convention: sparse\n"
        )
        with pytest.raises(ValueError, match="convention"):
            Config.from_yaml(str(path))


class TestFromArgs:
    """Test Config.from_args()."""

    def test_positional_inputs(self):
        config = Config.from_args(_parse(["photo.png", "lm.json", "-o", "out"]))

        assert config.image_file == "photo.png"
        assert config.landmarks_file == "lm.json"
        assert config.export.output_dir == "out"

    def test_overrides(self):
        config = Config.from_args(_parse([
            "photo.png", "lm.json", "-o", "out",
            "--name", "avatar",
            "--texture-size", "512",
            "--layers", "4",
            "--falloff", "linear",
            "--intensity", "0.2",
            "--no-heuristics",
            "--no-pose",
            "--include-translation",
            "--morph-convention", "absolute",
            "--no-ply",
        ]))

        assert config.export.name == "avatar"
        assert config.texture.size == 512
        assert config.head.layers == 4
        assert config.head.falloff == "linear"
        assert config.morph.intensity == 0.2
        assert not config.blendshapes.heuristics
        assert not config.pose.enabled
        assert config.pose.include_translation
        assert config.export.morph_convention == "absolute"
        assert not config.export.preview_ply

    def test_missing_inputs(self):
        with pytest.raises(ValueError, match="image and landmarks"):
            Config.from_args(_parse(["-o", "out"]))

    def test_missing_output_dir(self):
        with pytest.raises(ValueError, match="output-dir"):
            Config.from_args(_parse(["photo.png", "lm.json"]))

    def test_config_file_with_cli_override(self, tmp_path):
        path = tmp_path / "config.yaml"
        Config(image_file="photo.png", landmarks_file="lm.json").to_yaml(str(path))

        config = Config.from_args(_parse(["-c", str(path), "--layers", "2"]))

        assert config.image_file == "photo.png"
        assert config.head.layers == 2

    def test_invalid_choice_rejected_by_parser(self):
        with pytest.raises(SystemExit):
            _parse(["photo.png", "lm.json", "--falloff", "cubic"])
