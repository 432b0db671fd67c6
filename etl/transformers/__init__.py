from etl.transformers.data_transformer import DataTransformer
from etl.transformers.transformer import Transformer

__all__ = ["DataTransformer", "Transformer"]
