"""内置身份提供者适配器。"""
