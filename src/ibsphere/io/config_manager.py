"""
Configuration Management for Immersed Sphere Scenarios.

Plain-text configuration files hold one `key = value` pair per line:

    # Sphere released in a uniform stream
    scenario_name = Heavy Sphere
    nx = 48
    radius = 4.0
    body_x = 16.0, 32.0
    kernel = four_point
    save_gif = false

Lines starting with `#` are comments. Values are coerced to bool, int,
float or str; comma-separated values become lists.
"""

from pathlib import Path
from typing import Any, Dict, List

from ..core.kernels import KernelType


class ConfigManager:
    """Load, save and validate scenario configurations."""

    REQUIRED_KEYS = ['nx', 'ny', 'nz', 'dx', 'radius', 'dt']

    DEFAULTS: Dict[str, Any] = {
        'scenario_name': 'simulation',
        'nx': 32,
        'ny': 32,
        'nz': 32,
        'dx': 1.0,
        'n_ghost': 2,
        'radius': 4.0,
        'rho_body': 2.0,
        'rho_fluid': 1.0,
        'body_x': [16.0],
        'body_y': [16.0],
        'body_z': [16.0],
        'u_inf': 0.0,
        'v_inf': 0.0,
        'w_inf': 0.0,
        'dt': 0.1,
        'n_steps': 20,
        'output_interval': 2,
        'kernel': 'four_point',
        'sub_iterations': 2,
        'relaxation': 0.5,
        'save_gif': True,
        'animation_frames': 30,
        'animation_duration': 5.0,
    }

    CASES: Dict[str, Dict[str, Any]] = {
        'case1': {
            'scenario_name': 'Case 1 - Sphere in Still Fluid',
            'u_inf': 0.0,
            'rho_body': 2.0,
        },
        'case2': {
            'scenario_name': 'Case 2 - Sphere in Uniform Stream',
            'nx': 48,
            'u_inf': 0.1,
            'rho_body': 1.5,
            'n_steps': 40,
            'output_interval': 4,
        },
        'case3': {
            'scenario_name': 'Case 3 - Two Heavy Spheres',
            'nx': 40,
            'body_x': [14.0, 14.0],
            'body_y': [16.0, 16.0],
            'body_z': [10.0, 22.0],
            'u_inf': 0.1,
            'rho_body': 4.0,
            'n_steps': 40,
            'output_interval': 4,
            'sub_iterations': 3,
        },
    }

    @staticmethod
    def load(filepath: str) -> Dict[str, Any]:
        """
        Load configuration from a text file.

        Args:
            filepath: Path to configuration file

        Returns:
            Configuration dictionary
        """
        config: Dict[str, Any] = {}

        with open(filepath, 'r') as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line or line.startswith('#'):
                    continue

                if '=' not in line:
                    raise ValueError(f"{filepath}:{line_no}: expected 'key = value', got '{line}'")

                key, value = line.split('=', 1)
                value = value.split('#', 1)[0].strip()
                config[key.strip()] = ConfigManager._parse_value(value)

        return config

    @staticmethod
    def _parse_value(value: str) -> Any:
        """Coerce a raw string value."""
        if ',' in value:
            return [ConfigManager._parse_scalar(v.strip()) for v in value.split(',') if v.strip()]
        return ConfigManager._parse_scalar(value)

    @staticmethod
    def _parse_scalar(value: str) -> Any:
        lowered = value.lower()
        if lowered in ('true', 'yes', 'on'):
            return True
        if lowered in ('false', 'no', 'off'):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            return value

    @staticmethod
    def save(config: Dict[str, Any], filepath: str):
        """
        Save configuration to a text file.

        Args:
            config: Configuration dictionary
            filepath: Output file path
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        with open(filepath, 'w') as f:
            f.write("# ibsphere configuration\n")
            for key, value in config.items():
                if isinstance(value, bool):
                    text = 'true' if value else 'false'
                elif isinstance(value, (list, tuple)):
                    text = ', '.join(str(v) for v in value)
                else:
                    text = str(value)
                f.write(f"{key} = {text}\n")

    @staticmethod
    def get_default_config(case: str = 'case1') -> Dict[str, Any]:
        """
        Built-in configuration for a named scenario.

        Args:
            case: 'case1', 'case2' or 'case3'

        Returns:
            Complete configuration dictionary
        """
        if case not in ConfigManager.CASES:
            raise ValueError(
                f"Unknown case '{case}'; choose from {sorted(ConfigManager.CASES)}"
            )

        config = {
            k: list(v) if isinstance(v, list) else v
            for k, v in ConfigManager.DEFAULTS.items()
        }
        for key, value in ConfigManager.CASES[case].items():
            config[key] = list(value) if isinstance(value, list) else value
        return config

    @staticmethod
    def with_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
        """Fill missing optional keys from the built-in defaults."""
        merged = {
            k: list(v) if isinstance(v, list) else v
            for k, v in ConfigManager.DEFAULTS.items()
        }
        merged.update(config)
        for key in ('body_x', 'body_y', 'body_z'):
            merged[key] = ConfigManager.as_list(merged[key])
        return merged

    @staticmethod
    def as_list(value: Any) -> List[float]:
        """Scalar or sequence to a list of floats."""
        if isinstance(value, (list, tuple)):
            return [float(v) for v in value]
        return [float(value)]

    @staticmethod
    def validate_config(config: Dict[str, Any]) -> bool:
        """
        Check required keys and value ranges.

        Args:
            config: Configuration dictionary

        Returns:
            True if valid

        Raises:
            ValueError: If a required key is missing or a value is out of range
        """
        missing = [k for k in ConfigManager.REQUIRED_KEYS if k not in config]
        if missing:
            raise ValueError(f"Missing required configuration keys: {missing}")

        for key in ('nx', 'ny', 'nz'):
            if int(config[key]) != config[key] or config[key] < 1:
                raise ValueError(f"{key} must be a positive integer, got {config[key]}")

        if config['dx'] <= 0:
            raise ValueError(f"dx must be positive, got {config['dx']}")
        if config['dt'] <= 0:
            raise ValueError(f"dt must be positive, got {config['dt']}")
        if config['radius'] < config['dx']:
            raise ValueError(
                f"radius ({config['radius']}) must be at least one cell width ({config['dx']})"
            )

        if config.get('n_ghost', 2) < 2:
            raise ValueError(f"n_ghost must be >= 2, got {config['n_ghost']}")
        if config.get('sub_iterations', 1) < 1:
            raise ValueError(f"sub_iterations must be >= 1, got {config['sub_iterations']}")

        relaxation = config.get('relaxation', 0.5)
        if not (0.0 < relaxation <= 1.0):
            raise ValueError(f"relaxation must lie in (0, 1], got {relaxation}")

        if 'kernel' in config:
            KernelType.from_name(config['kernel'])

        if config.get('rho_body', 2.0) == config.get('rho_fluid', 1.0):
            raise ValueError("rho_body must differ from rho_fluid")

        seeds = [config[k] for k in ('body_x', 'body_y', 'body_z') if k in config]
        if seeds:
            lengths = {len(ConfigManager.as_list(s)) for s in seeds}
            if len(seeds) != 3 or len(lengths) != 1:
                raise ValueError("body_x, body_y and body_z must have equal lengths")

        return True
