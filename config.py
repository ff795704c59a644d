"""
設定管理モジュール
JSON形式で設定を保存/読み込み
"""
import json
import logging
import os

logger = logging.getLogger(__name__)


class Config:
    def __init__(self, config_file='ntp_codec_config.json'):
        self.config_file = config_file
        self.settings = self._load_default_settings()
        self.load()

    def _load_default_settings(self):
        """デフォルト設定"""
        return {
            # クライアント要求のヘッダ既定値
            'ntp': {
                'version': 4,
                'poll': 6,         # 2**6 = 64秒
                'precision': -20,  # 2**-20 ≒ 1µs
                'randomize_low_bits': True,  # RFC 2030: 下位2bitを乱数で埋める
            },

            # デバッグモード
            'debug': False,

            # ログ設定
            'logging': {
                'level': 'INFO',
                'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
            },
        }

    def load(self):
        """設定をファイルから読み込み"""
        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    loaded = json.load(f)
                    # デフォルト設定にマージ（新しいキーがあっても対応）
                    self._merge_settings(self.settings, loaded)
                    return True
        except (OSError, ValueError) as e:
            logger.warning("config load failed (%s): %s", self.config_file, e)
        return False

    def _merge_settings(self, default, loaded):
        """デフォルト設定に読み込んだ設定をマージ"""
        for key, value in loaded.items():
            if key in default:
                if isinstance(value, dict) and isinstance(default[key], dict):
                    self._merge_settings(default[key], value)
                else:
                    default[key] = value

    def save(self):
        """設定をファイルに保存"""
        try:
            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(self.settings, f, indent=4, ensure_ascii=False)
            return True
        except OSError as e:
            logger.warning("config save failed (%s): %s", self.config_file, e)
            return False

    def get(self, *keys):
        """設定を取得（ネストされたキーに対応）"""
        value = self.settings
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return None
        return value

    def set(self, *keys, value):
        """設定を変更（ネストされたキーに対応）"""
        if len(keys) == 0:
            return False

        settings = self.settings
        for key in keys[:-1]:
            if key not in settings:
                settings[key] = {}
            settings = settings[key]

        settings[keys[-1]] = value
        return True

    def header_defaults(self):
        """client_request() に渡すヘッダ既定値"""
        ntp = self.get('ntp') or {}
        return {
            'version': int(ntp.get('version', 4)),
            'poll': int(ntp.get('poll', 0)),
            'precision': int(ntp.get('precision', 0)),
            'randomize': bool(ntp.get('randomize_low_bits', True)),
        }
